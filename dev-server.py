#!/usr/bin/env python3
"""
dev-server.py - Local development server for the quiz flow functions.

Serves the flow graph, eligibility and analytics handlers to the quiz
builder's admin UI during development.
Run: python dev-server.py
"""
from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv
import logging
import os

# Local secrets (DB_CONNECTION etc.)
load_dotenv(os.path.join(os.path.dirname(__file__), '.env.local'))

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

# Read configuration from environment
FRONTEND_PORT = os.environ.get("VITE_PORT", "5173")
ALLOWED_ORIGINS = os.environ.get(
    "ALLOWED_ORIGINS",
    f"http://localhost:{FRONTEND_PORT},http://127.0.0.1:{FRONTEND_PORT}"
).split(",")

app = FastAPI(
    title="Quiz Flow Compute (Local Dev)",
    version="1.0.0",
    description="Local development server for quiz flow graph and analytics functions"
)

# CORS configuration from environment
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health check
@app.get("/")
@app.get("/api")
def health():
    return {
        "status": "ok",
        "service": "quizflow-compute",
        "env": "local"
    }


async def _read_body(request: Request) -> dict:
    try:
        data = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be JSON")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return data


@app.post("/api/flow/recompute")
async def flow_recompute_endpoint(request: Request):
    """
    Build canvas nodes/edges from a stage list (optionally with analytics).

    Request: { "stages": [...], "selectedStageId": "s1", "analytics": {...} }
    Response: { "nodes": [...], "edges": [...], "stats": {...} }
    """
    data = await _read_body(request)
    try:
        from quizflow.api_handlers import handle_flow_recompute
        return handle_flow_recompute(data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/api/flow/eligibility")
async def flow_eligibility_endpoint(request: Request):
    """Connection handles per component/option and the no-navigation warning per stage."""
    data = await _read_body(request)
    try:
        from quizflow.api_handlers import handle_flow_eligibility
        return handle_flow_eligibility(data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/api/flow/mutate")
async def flow_mutate_endpoint(request: Request):
    """
    Apply one canvas edit (position, connect, delete-edges, auto-arrange,
    remove-stage) and return the stage list to persist.
    """
    data = await _read_body(request)
    try:
        from quizflow.api_handlers import handle_flow_mutate
        return handle_flow_mutate(data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/api/flow/conversion")
async def flow_conversion_endpoint(request: Request):
    """Stage-to-stage conversion rates and their health classification."""
    data = await _read_body(request)
    try:
        from quizflow.api_handlers import handle_flow_conversion
        return handle_flow_conversion(data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/api/flow/analytics")
async def flow_analytics_endpoint(request: Request):
    """
    Aggregate per-stage leads and recent activity for a quiz from Postgres.

    Request: { "quizId": "..." }
    Response: { "stageAnalytics": {...}, "totalSessions": 42 }
    """
    data = await _read_body(request)
    try:
        from quizflow.api_handlers import handle_flow_analytics
        return await handle_flow_analytics(data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


if __name__ == "__main__":
    import uvicorn

    # Read port from environment variable, default to 9000
    port = int(os.environ.get("PYTHON_API_PORT", "9000"))

    print("Quiz Flow Compute Server")
    print("━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━")
    print(f"Server:     http://localhost:{port}")
    print(f"API Docs:   http://localhost:{port}/docs")
    print("")
    print("Available endpoints:")
    print("  GET  /                     - Health check")
    print("  POST /api/flow/recompute   - Nodes/edges for the flow canvas")
    print("  POST /api/flow/eligibility - Connection handles per stage")
    print("  POST /api/flow/mutate      - Apply a canvas edit to the stage list")
    print("  POST /api/flow/conversion  - Stage-to-stage conversion rates")
    print("  POST /api/flow/analytics   - Per-stage leads from the quiz database")
    print("━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━")
    print("")

    uvicorn.run(
        "dev-server:app",
        host="0.0.0.0",
        port=port,
        reload=True,
        log_level="info"
    )
