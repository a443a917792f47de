"""FastAPI entrypoint for the Inkwell backend."""

import logging
from dataclasses import asdict
from typing import Any, Dict, Optional

import uvicorn
from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from app_state import InkwellAppState
from models import AnalyzeRequest, BatchRequest, RulesRequest, RunRuleRequest
from scheduler import format_countdown
from services import WritingSession

logger = logging.getLogger(__name__)


def _session(request: Request) -> WritingSession:
    return request.app.state.session


def create_app(session: Optional[WritingSession] = None) -> FastAPI:
    app = FastAPI(title="Inkwell Backend", description="Writing feedback backend API")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.session = session if session is not None else InkwellAppState().session

    @app.get("/health", tags=["health"])
    async def health():
        return {"status": "ok", "message": "Inkwell backend is running"}

    @app.post("/analyze", tags=["structure"])
    async def analyze(payload: AnalyzeRequest, request: Request):
        update = _session(request).update_text(payload.text)
        return {
            "snapshot": update.snapshot.to_dict(),
            "events": [asdict(event) for event in update.events],
            "removed_feedback": [asdict(item) for item in update.removed_feedback],
        }

    @app.get("/structure/stats", tags=["structure"])
    async def structure_stats(request: Request):
        return asdict(_session(request).structure.statistics())

    @app.put("/rules", tags=["rules"])
    async def put_rules(payload: RulesRequest, request: Request):
        rules = _session(request).set_rules(item.to_rule() for item in payload.rules)
        return {"rules": [asdict(rule) for rule in rules]}

    @app.get("/rules", tags=["rules"])
    async def get_rules(request: Request):
        return {"rules": [asdict(rule) for rule in _session(request).rules()]}

    @app.post("/rules/{rule_id}/run", tags=["rules"])
    async def run_rule(rule_id: str, payload: RunRuleRequest, request: Request):
        session = _session(request)
        if session.get_rule(rule_id) is None:
            raise HTTPException(status_code=404, detail="Rule not found")
        outcome = await session.run_rule(rule_id, payload.text)
        return {
            "success": outcome is not None,
            "outcome": asdict(outcome) if outcome is not None else None,
        }

    @app.post("/batch", tags=["rules"])
    async def batch(payload: BatchRequest, request: Request):
        result = await _session(request).run_batch(payload.text)
        if result is None:
            return {"started": False}
        return {
            "started": True,
            "disabled": result.disabled,
            "total_count": result.total_count,
            "success_count": result.success_count,
            "error_count": result.error_count,
            "outcomes": [asdict(outcome) for outcome in result.outcomes],
        }

    @app.delete("/timers/{rule_id}", tags=["timers"])
    async def clear_timer(rule_id: str, request: Request):
        if not _session(request).cancel_rule(rule_id):
            raise HTTPException(status_code=404, detail="No timer for rule")
        return {"success": True, "rule_id": rule_id}

    @app.post("/timers/reset", tags=["timers"])
    async def reset_timers(request: Request):
        _session(request).scheduler.reset_all_timers()
        return {"success": True}

    @app.get("/timers/{rule_id}/countdown", tags=["timers"])
    async def countdown(rule_id: str, request: Request):
        remaining = _session(request).scheduler.countdown_remaining(rule_id)
        if remaining is None:
            return {"rule_id": rule_id, "remaining_ms": None, "display": None}
        return {
            "rule_id": rule_id,
            "remaining_ms": remaining,
            "display": format_countdown(int(-(-remaining // 1000))),
        }

    @app.get("/feedback/{content_id}", tags=["feedback"])
    async def feedback_for_content(content_id: str, request: Request):
        associations = _session(request).associations
        if content_id not in associations.content_associations:
            raise HTTPException(status_code=404, detail="Content not found")
        entries = associations.get_feedback_for_content(content_id)
        return {"content_id": content_id, "feedback": [asdict(entry) for entry in entries]}

    @app.delete("/feedback/{feedback_id}", tags=["feedback"])
    async def remove_feedback(feedback_id: str, request: Request):
        session = _session(request)
        if not session.associations.remove_feedback(feedback_id):
            raise HTTPException(status_code=404, detail="Feedback not found")
        session.save_associations()
        return {"success": True, "feedback_id": feedback_id}

    @app.get("/associations", tags=["feedback"])
    async def associations(request: Request):
        store = _session(request).associations
        return {
            "associations": [asdict(item) for item in store.get_all_associations()],
            "statistics": store.statistics(),
        }

    @app.get("/associations/export", tags=["feedback"])
    async def export_associations(request: Request):
        return _session(request).associations.export_associations()

    @app.post("/associations/import", tags=["feedback"])
    async def import_associations(request: Request, payload: Dict[str, Any] = Body(...)):
        session = _session(request)
        if not session.associations.import_associations(payload):
            logger.warning("Rejected association import")
            raise HTTPException(status_code=400, detail="Invalid association export")
        session.save_associations()
        return {
            "success": True,
            "association_count": len(session.associations.content_associations),
        }

    return app


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    uvicorn.run(create_app(), host="127.0.0.1", port=8000)
