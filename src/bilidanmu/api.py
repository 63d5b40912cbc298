"""Bilibili API 호출 (방 번호 / 채팅 서버 / uid 조회)"""
import logging

import requests

from .config import USER_AGENT

logger = logging.getLogger(__name__)

HEADERS = {'User-Agent': USER_AGENT}
TIMEOUT = 10


def _get_json(url: str, params: dict | None = None, cookie: str = '') -> dict:
    headers = dict(HEADERS)
    if cookie:
        headers['Cookie'] = cookie
    response = requests.get(url, params=params, headers=headers, timeout=TIMEOUT)
    response.raise_for_status()
    return response.json()


def fetch_room_info(room_id: int) -> dict:
    """짧은 방 번호 → 실제 방 번호

    반환: {'code': 0, 'data': {'room_id': ..., 'short_id': ..., 'uid': ...}, ...}
    """
    url = 'https://api.live.bilibili.com/room/v1/Room/room_init'
    return _get_json(url, params={'id': room_id})


def fetch_danmu_info(room_id: int, cookie: str = '') -> dict:
    """채팅 서버 목록과 입장 토큰

    반환: {'code': 0, 'data': {'token': ..., 'host_list': [{'host': ..., 'wss_port': 443}, ...]}}
    """
    url = 'https://api.live.bilibili.com/xlive/web-room/v1/index/getDanmuInfo'
    return _get_json(url, params={'id': room_id, 'type': 0}, cookie=cookie)


def fetch_uid(cookie: str) -> int:
    url = 'https://api.bilibili.com/x/web-interface/nav'
    data = _get_json(url, cookie=cookie)
    if data.get('code') != 0:
        raise ValueError(f"nav 조회 실패: code={data.get('code')} message={data.get('message')}")
    return int(data['data']['mid'])


class BiliApi:
    """ChatWorker 가 사용하는 조회 인터페이스의 기본 구현

    같은 메서드를 가진 객체라면 무엇이든 ChatWorker(api=...) 로 넘길 수 있다.
    """

    def __init__(self, cookie: str = ''):
        self.cookie = cookie

    def get_room_info(self, room_id: int) -> dict:
        return fetch_room_info(room_id)

    def get_danmu_info(self, room_id: int) -> tuple[int, dict]:
        """(uid, danmu_info) 반환. uid 조회 실패 시 0"""
        uid = 0
        if self.cookie:
            try:
                uid = fetch_uid(self.cookie)
            except (requests.RequestException, ValueError, KeyError):
                logger.error('uid 조회 실패', exc_info=True)
                uid = 0
        return uid, fetch_danmu_info(room_id, self.cookie)
