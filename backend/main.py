import logging

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from config import TraceLimits
from trace_types import Dialect
from tracer import trace_events

load_dotenv()

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI()

# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


class TraceRequest(BaseModel):
    code: str
    language: Dialect = Dialect.PYTHON


class CTraceRequest(BaseModel):
    code: str


@app.post("/trace")
async def trace(request: TraceRequest):
    logger.info("Tracing %d characters of %s", len(request.code), request.language.value)
    return trace_events(request.code, request.language, TraceLimits.from_env())


@app.post("/trace-c")
async def trace_c_code(request: CTraceRequest):
    logger.info("Tracing %d characters of c", len(request.code))
    return trace_events(request.code, Dialect.C, TraceLimits.from_env())
