from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pageshot.browser import BrowserPool
from pageshot.config import get_settings
from pageshot.errors import CaptureError, InvalidInput
from pageshot.models import CaptureRequest, CaptureResponse


browser_pool = BrowserPool()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: warm the shared browser so the first request doesn't pay for launch
    try:
        await browser_pool.start()
    except Exception as e:
        print(f"[browser-pool] Failed to start (will retry on first request): {e}")
    yield
    await browser_pool.stop()


app = FastAPI(title="Pageshot API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

@app.exception_handler(CaptureError)
async def capture_error_handler(request: Request, exc: CaptureError):
    return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": exc.message})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    print(f"[capture] Unexpected failure: {type(exc).__name__}: {exc}")
    return JSONResponse(status_code=500, content={"ok": False, "error": f"internal error: {exc}"})


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.get("/")
def root():
    return {"message": "Pageshot is running"}


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "browser": "ready" if browser_pool.started else "cold",
        "active_sessions": browser_pool.active,
    }


async def _read_capture_request(request: Request) -> CaptureRequest:
    try:
        payload = await request.json()
    except ValueError as e:
        raise InvalidInput(f"invalid JSON: {e}")
    return CaptureRequest.parse(payload)


@app.post("/scrape", response_model=CaptureResponse)
async def scrape_endpoint(request: Request):
    """Render a page and return one stitched full-height screenshot."""
    from pageshot.pipeline import run_capture

    capture_request = await _read_capture_request(request)
    result = await run_capture(capture_request, browser_pool)
    return CaptureResponse(data=result)


app.add_api_route("/capture", scrape_endpoint, methods=["POST"], response_model=CaptureResponse)


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port)
