from fastapi import FastAPI

from chapal.api.chat import router as chat_router
from chapal.api.review import router as review_router

app = FastAPI(title="CHAPAL API")
app.include_router(chat_router)
app.include_router(review_router)
