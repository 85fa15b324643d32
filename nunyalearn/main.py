# nunyalearn/main.py  (통합 엔트리포인트)
from dotenv import load_dotenv

# 루트 .env 로딩: settings/engine보다 먼저 읽혀야 함
load_dotenv()

from nunyalearn.backend.main import app as app  # noqa: E402
