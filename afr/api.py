from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import asdict
from threading import Event

from fastapi import FastAPI, HTTPException, Query

from . import db
from .api_models import EventOut, FleetStateOut, ReconcileOut
from .kube import KubeCluster, NotFoundError
from .reconciler import FleetReconciler, ReconcileResult
from .restart import RollingRestartEngine
from .trigger import ResyncTrigger


def build_trigger(cluster=None) -> ResyncTrigger:
    """Wire the cluster adapter, the reconciler and the resync loop."""
    cluster = cluster or KubeCluster()
    stop = Event()
    reconciler = FleetReconciler(cluster, restart_engine=RollingRestartEngine(cluster, stop=stop))
    return ResyncTrigger(cluster, reconciler, stop=stop)


def _result_out(r: ReconcileResult) -> ReconcileOut:
    return ReconcileOut(**asdict(r))


def create_app(trigger: ResyncTrigger | None = None, start_loop: bool = True) -> FastAPI:
    state: dict[str, ResyncTrigger] = {}

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db.init_db()
        state["trigger"] = trigger or build_trigger()
        if start_loop:
            state["trigger"].start()
        yield
        state["trigger"].stop()

    app = FastAPI(title="Agent Fleet Reconciler", lifespan=lifespan)

    def _trigger() -> ResyncTrigger:
        t = state.get("trigger")
        if t is None:
            raise HTTPException(status_code=503, detail="Reconciler not started")
        return t

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "healthy"}

    @app.get("/events", response_model=list[EventOut])
    def events(limit: int = Query(100, ge=1, le=1000), fleet: str | None = None):
        return db.latest_events(limit=limit, fleet=fleet)

    @app.get("/fleets", response_model=list[FleetStateOut])
    def fleets():
        out: list[FleetStateOut] = []
        for st in _trigger().runtime.snapshot():
            out.append(
                FleetStateOut(
                    fleet=st.key,
                    healthy=st.consecutive_failures == 0,
                    consecutive_failures=st.consecutive_failures,
                    authority_outages=st.authority_outages,
                    last_error=st.last_error,
                    last_result=_result_out(st.last_result) if st.last_result else None,
                )
            )
        return out

    @app.post("/fleets/{namespace}/{name}/reconcile", response_model=ReconcileOut)
    def reconcile(namespace: str, name: str):
        try:
            result = _trigger().reconcile_now(namespace, name)
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=f"Fleet {namespace}/{name} not found") from e
        except Exception as e:
            raise HTTPException(status_code=502, detail=f"{type(e).__name__}: {e}") from e
        return _result_out(result)

    return app
