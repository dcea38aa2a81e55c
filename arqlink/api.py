"""
FastAPI control surface for the ARQ engine

Provides REST endpoints for:
- Running local sessions (in-memory or UDP loopback)
- Session history and reports
- PDF report download
- Protocol information
"""

import base64
import binascii
import threading
import uuid
from datetime import datetime
from typing import Dict, List, Literal, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel, Field

from . import __version__
from .config import MAX_TOTAL_PACKETS, SessionConfig
from .errors import TransportError
from .reliability.policy import PROTOCOL_NAMES, ProtocolMode, ProtocolPolicy
from .report import SessionReport, generate_session_report
from .session import run_local_session

app = FastAPI(
    title="ARQ Link API",
    description="Stop-and-Wait, Go-Back-N and Selective Repeat over a lossy datagram channel",
    version=__version__
)

# Session history, newest last
sessions: Dict[str, dict] = {}
sessions_lock = threading.Lock()
MAX_SESSIONS = 100


# ============ Pydantic Models ============

class SessionRequest(BaseModel):
    config: SessionConfig = Field(default_factory=SessionConfig)
    data_base64: Optional[str] = None
    transport: Literal['memory', 'udp'] = 'memory'


class SessionResponse(BaseModel):
    session_id: str
    success: bool
    message: str
    report: dict


def _store(session_id: str, request: SessionRequest, report: SessionReport):
    with sessions_lock:
        sessions[session_id] = {
            "id": session_id,
            "timestamp": datetime.now().isoformat(),
            "transport": request.transport,
            "config": request.config.model_dump(mode='json'),
            "report": report
        }
        while len(sessions) > MAX_SESSIONS:
            sessions.pop(next(iter(sessions)))


def _get_session(session_id: str) -> dict:
    with sessions_lock:
        session = sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


# ============ Session Endpoints ============

@app.post("/api/sessions", tags=["Sessions"], response_model=SessionResponse)
def run_session(request: SessionRequest):
    """Run a local session to completion and store its report."""
    data = None
    if request.data_base64 is not None:
        try:
            data = base64.b64decode(request.data_base64, validate=True)
        except binascii.Error as e:
            raise HTTPException(status_code=400, detail=f"Invalid base64 payload: {e}")
        packets = -(-len(data) // request.config.payload_size)
        if packets > MAX_TOTAL_PACKETS:
            raise HTTPException(
                status_code=400,
                detail=f"Payload needs {packets} packets, limit is {MAX_TOTAL_PACKETS}")

    try:
        report = run_local_session(request.config, data=data, transport=request.transport)
    except TransportError as e:
        raise HTTPException(status_code=500, detail=f"Transport setup failed: {e}")

    session_id = uuid.uuid4().hex[:12]
    _store(session_id, request, report)

    return SessionResponse(
        session_id=session_id,
        success=report.success,
        message="Session complete" if report.success else f"Session failed: {report.failure}",
        report=report.to_dict()
    )


@app.get("/api/sessions", tags=["Sessions"])
async def list_sessions():
    """Get session history."""
    with sessions_lock:
        history = list(sessions.values())
    return {
        "sessions": [
            {
                "id": s["id"],
                "timestamp": s["timestamp"],
                "protocol_mode": s["report"].protocol_mode,
                "total_packets": s["report"].total_packets,
                "success": s["report"].success
            }
            for s in history
        ]
    }


@app.get("/api/sessions/{session_id}", tags=["Sessions"])
async def get_session(session_id: str):
    """Get specific session details."""
    session = _get_session(session_id)
    return {**session, "report": session["report"].to_dict()}


@app.get("/api/sessions/{session_id}/report.pdf", tags=["Reports"])
def download_report(session_id: str):
    """Download the PDF report for a session."""
    session = _get_session(session_id)
    pdf_bytes = generate_session_report(session["report"], session_id=session_id)
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f"attachment; filename=session_report_{session_id}.pdf"
        }
    )


# ============ Info ============

PROTOCOL_DESCRIPTIONS = {
    ProtocolMode.STOP_AND_WAIT: "Send one packet, wait for its ACK",
    ProtocolMode.GO_BACK_N: "Sliding window with cumulative ACKs, resend the whole window on timeout",
    ProtocolMode.SELECTIVE_REPEAT: "Sliding window with individual ACKs, receiver buffering and per-packet timers",
}


@app.get("/api/protocols", tags=["Info"])
async def get_protocol_info():
    """Get information about available protocols."""
    protocols: List[dict] = []
    for mode in ProtocolMode:
        policy = ProtocolPolicy.for_mode(mode, 1)
        protocols.append({
            "id": mode.value,
            "name": PROTOCOL_NAMES[mode],
            "description": PROTOCOL_DESCRIPTIONS[mode],
            "ack_mode": policy.ack_mode.value,
            "retransmit_scope": policy.retransmit_scope.value,
            "per_packet_timers": policy.per_packet_timers,
            "fixed_window": mode == ProtocolMode.STOP_AND_WAIT
        })
    return {"protocols": protocols}


# ============ Health Check ============

@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint."""
    with sessions_lock:
        count = len(sessions)
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "version": __version__,
        "sessions": count
    }


# ============ Run Server ============

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
