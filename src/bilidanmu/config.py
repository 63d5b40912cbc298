"""
경로 설정 및 상수 정의
"""
import os


def get_base_dir():
    """
    애플리케이션 기본 디렉토리 반환
    - 환경 변수 BILIDANMU_HOME 이 있으면 그 경로
    - 없으면 현재 작업 디렉토리
    """
    return os.environ.get('BILIDANMU_HOME') or os.getcwd()


BASE_DIR = get_base_dir()

# 사용자 데이터 경로 (로그, 쿠키)
LOG_DIR = os.path.join(BASE_DIR, 'log')
COOKIES_PATH = os.path.join(BASE_DIR, 'cookies.json')

# 채팅 서버 설정
DEFAULT_HOST = 'broadcastlv.chat.bilibili.com'
USER_AGENT = ('Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
              '(KHTML, like Gecko) Chrome/102.0.0.0 Safari/537.36')

# 타이밍 (초)
HEARTBEAT_INTERVAL = 30
CONNECT_RETRY_DELAY = 2
READ_RETRY_DELAY = 0.003
