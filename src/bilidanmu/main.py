"""bilidanmu 콘솔 진입점

    bilidanmu https://live.bilibili.com/21452505
    bilidanmu 21452505 --debug

cookies.json (이름 → 값 dict) 이 있으면 로그인 상태로 접속한다.
"""
import argparse
import asyncio
import json
import logging
import os
import re
import sys

from .chat_logger import ChatLogger
from .chat_worker import ChatWorker
from .cmd_type import EventType
from .config import COOKIES_PATH
from .errors import BiliDanmuError

logger = logging.getLogger(__name__)

ROOM_URL_PATTERN = re.compile(r'live\.bilibili\.com/(?:h5/)?(\d+)')


def extract_room_id(url_or_id: str) -> int | None:
    """URL 또는 방 번호 문자열에서 방 번호 추출"""
    url_or_id = url_or_id.strip()
    if url_or_id.isdigit():
        return int(url_or_id)
    match = ROOM_URL_PATTERN.search(url_or_id)
    if match:
        return int(match.group(1))
    return None


def load_cookie(path: str = COOKIES_PATH) -> str:
    """cookies.json → 'k=v; k=v;' 형식 문자열. 파일이 없으면 빈 문자열"""
    if not os.path.exists(path):
        return ''
    with open(path, encoding='utf-8') as f:
        cookies = json.load(f)
    return ' '.join(f'{k}={v};' for k, v in cookies.items())


def setup_logging(level=logging.INFO):
    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )


def print_event(event):
    data = event.data
    if event.type is EventType.DANMAKU:
        print(f'{data.uname}: {data.content}')
    elif event.type is EventType.GIFT:
        print(f'[선물] {data.uname}: {data.gift_name} x{data.num}')
    elif event.type is EventType.SUPER_CHAT:
        print(f'[슈퍼챗 {data.price}] {data.uname}: {data.message}')
    elif event.type is EventType.ONLINE:
        logger.info('인기도: %d', data.count)


async def run(room_id: int, cookie: str = ''):
    worker = ChatWorker(room_id, cookie=cookie,
                        on_status_callback=lambda state: logger.info('상태: %s', state.value))
    chat_logger = ChatLogger()
    for event_type in (EventType.DANMAKU, EventType.GIFT, EventType.SUPER_CHAT):
        worker.add_handler(event_type, print_event)
        worker.add_handler(event_type, chat_logger.log_event)
    worker.add_handler(EventType.ONLINE, print_event)

    await worker.start()
    chat_logger.setup(worker.room_id)
    try:
        await asyncio.Event().wait()
    finally:
        await worker.stop()
        chat_logger.close()


def main(argv=None):
    parser = argparse.ArgumentParser(prog='bilidanmu', description='Bilibili 라이브 탄막 수신')
    parser.add_argument('room', help='방 번호 또는 방 URL')
    parser.add_argument('--cookies', default=COOKIES_PATH, help='cookies.json 경로')
    parser.add_argument('--debug', action='store_true')
    args = parser.parse_args(argv)

    setup_logging(logging.DEBUG if args.debug else logging.INFO)

    room_id = extract_room_id(args.room)
    if room_id is None:
        print(f'오류: 방 번호를 찾을 수 없습니다: {args.room}')
        return 1

    try:
        asyncio.run(run(room_id, load_cookie(args.cookies)))
    except KeyboardInterrupt:
        pass
    except BiliDanmuError as e:
        print(f'오류: {e}')
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
