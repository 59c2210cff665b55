from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.routes.documents import router as documents_router
from src.api.routes.query import router as query_router
from src.api.routes.sessions import router as sessions_router
from src.api.routes.tasks import router as tasks_router

app = FastAPI(
    title="Advisor Meeting API",
    description="Live client-meeting transcript, action-item board and knowledge assistant",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:5173",
    ],
    allow_origin_regex=r"http://localhost:\d+",
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sessions_router)
app.include_router(tasks_router)
app.include_router(query_router)
app.include_router(documents_router)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}
