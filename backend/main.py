# uvicorn main:app --reload  (backend/ 에서 실행)
from physio.main import create_app

app = create_app()
