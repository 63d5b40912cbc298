"""탄막 로그 기록

log/{room_id}/YYYY-MM-DD.log 형식으로 날짜별 파일에 기록.
날짜가 바뀌면 자동으로 새 파일로 롤오버.

ChatWorker 에 핸들러로 등록해서 사용한다:
    chat_logger = ChatLogger()
    chat_logger.setup(worker.room_id)
    worker.add_handler(EventType.DANMAKU, chat_logger.log_event)
"""

import datetime
import logging
import os

from .cmd_type import EventType
from .config import LOG_DIR


class ChatLogger:
    def __init__(self, log_dir: str = LOG_DIR):
        self._log_dir = log_dir
        self._logger = logging.getLogger('bilidanmu_chat_log')
        self._logger.setLevel(logging.INFO)
        self._logger.propagate = False
        self._handler = None
        self._current_date = None
        self._room_id = None

    def setup(self, room_id: int):
        """방 로거 초기화. 연결 성공 시 호출."""
        self._room_id = room_id
        self._update_handler()

    def _update_handler(self):
        """날짜에 맞는 파일 핸들러 설정 (롤오버)"""
        today = datetime.date.today()
        if self._handler and self._current_date == today:
            return

        if self._handler:
            self._logger.removeHandler(self._handler)
            self._handler.close()

        room_dir = os.path.join(self._log_dir, str(self._room_id))
        os.makedirs(room_dir, exist_ok=True)

        log_path = os.path.join(room_dir, f'{today.isoformat()}.log')
        self._handler = logging.FileHandler(log_path, encoding='utf-8')
        self._handler.setFormatter(logging.Formatter('%(message)s'))
        self._logger.addHandler(self._handler)
        self._current_date = today

    def log_event(self, event):
        """탄막 / 선물 / 슈퍼챗 이벤트 한 건 기록"""
        if not self._room_id:
            return

        data = event.data
        if event.type is EventType.DANMAKU:
            msg_time = datetime.datetime.fromtimestamp(data.timestamp / 1000)
            self.log(msg_time, '탄막', data.uid, data.uname, data.content)
        elif event.type is EventType.GIFT:
            self.log(datetime.datetime.now(), '선물', data.uid, data.uname,
                     f'{data.gift_name} x{data.num}')
        elif event.type is EventType.SUPER_CHAT:
            self.log(datetime.datetime.now(), '슈퍼챗', data.uid, data.uname,
                     f'[{data.price}] {data.message}')

    def log(self, msg_time: datetime.datetime, chat_type: str, uid: int, nickname: str, message: str):
        """한 줄 기록"""
        if not self._room_id:
            return

        self._update_handler()
        time_str = msg_time.strftime('%H:%M:%S')
        self._logger.info('[%s][%s][%s] %s: %s', time_str, chat_type, uid, nickname, message)

    def close(self):
        """핸들러 정리"""
        if self._handler:
            self._logger.removeHandler(self._handler)
            self._handler.close()
            self._handler = None
        self._room_id = None
        self._current_date = None
