import re
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from services.analyzer.backfill import MAX_RESUMMARIZE_LIMIT, SummarizerUnavailable, recategorize, resummarize
from services.ingestor.app.fetch import fetch_stats
from services.orchestrator.app.auth import verify_trigger_secret
from services.orchestrator.app.dependencies import Components, build_components
from services.orchestrator.app.job_runs import time_since
from services.orchestrator.app.runner import Orchestrator, RunHandle, RunLeaseHeld
from shared.app_logging.logger import setup_logging
from shared.config.settings import Settings, get_settings
from shared.utils.deadline import Deadline

# Setup logging
logger = setup_logging("orchestrator")

JOB_STARTED_MESSAGE = "Job started. Check /api/job-status for results."


def run_detached(orchestrator: Orchestrator, handle: RunHandle, enrich_limit: Optional[int], budget: float) -> None:
    """Background continuation of a trigger; the JobRun row is its only output."""
    orchestrator.execute(handle, enrich_limit=enrich_limit, deadline=Deadline(budget))


def create_app(components: Optional[Components] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or (components.settings if components else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.components is None:
            app.state.components = build_components(settings)
        logger.info(
            f"Orchestrator ready: {len(app.state.components.registry.enabled())} enabled feeds, "
            f"mode={settings.pipeline.execution_mode}"
        )
        yield
        app.state.components.engine.dispose()
        logger.info("Orchestrator shut down cleanly")

    app = FastAPI(
        title="Energy Intel Orchestrator",
        description="Ingests energy news feeds, summarizes, categorizes and enriches them.",
        version=settings.version,
        lifespan=lifespan,
    )
    app.state.components = components

    def get_components(request: Request) -> Components:
        return request.app.state.components

    @app.get("/health")
    def health(c: Components = Depends(get_components)):
        """Comprehensive health check endpoint."""
        return c.health_checker.run_all_checks()

    @app.get("/health/live")
    def liveness_check():
        """Liveness check endpoint."""
        return {"status": "alive", "service": "orchestrator"}

    @app.get("/health/ready")
    def readiness_check(response: Response, c: Components = Depends(get_components)):
        readiness = c.health_checker.readiness()
        if readiness["status"] != "ready":
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return readiness

    @app.get("/metrics")
    def metrics():
        """Prometheus metrics endpoint."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.api_route("/api/orchestrator", methods=["GET", "POST"], dependencies=[Depends(verify_trigger_secret)])
    def trigger(
        background_tasks: BackgroundTasks,
        debug: bool = False,
        limit: Optional[int] = Query(default=None, ge=0),
        c: Components = Depends(get_components),
    ):
        pipeline_settings = c.settings.pipeline
        try:
            handle = c.orchestrator.start()
        except RunLeaseHeld as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
        except Exception as e:
            logger.exception("Could not record run start: %s", e)
            raise HTTPException(500, f"Failed to start job: {e}")

        if pipeline_settings.execution_mode == "background":
            background_tasks.add_task(
                run_detached, c.orchestrator, handle, limit, pipeline_settings.background_time_budget
            )
            payload = {
                "ok": True,
                "message": JOB_STARTED_MESSAGE,
                "started_at": handle.started_at.isoformat(),
                "run_id": handle.run_id,
            }
            if debug:
                payload["debug"] = {
                    "execution_mode": "background",
                    "time_budget_seconds": pipeline_settings.background_time_budget,
                    "enrich_limit": c.orchestrator.enrich_limit if limit is None else limit,
                    "enabled_feeds": [feed.name for feed in c.registry.enabled()],
                }
            return payload

        report = c.orchestrator.execute(
            handle, enrich_limit=limit, deadline=Deadline(pipeline_settings.inline_time_budget)
        )
        body = report.model_dump(mode="json", exclude=None if debug else {"ingestion": {"per_source"}})
        if report.status != "success":
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"ok": False, "error": report.error, "started_at": body["started_at"], "report": body},
            )
        return {"ok": True, "started_at": body["started_at"], "report": body}

    @app.get("/api/job-status", dependencies=[Depends(verify_trigger_secret)])
    def job_status(c: Components = Depends(get_components)):
        run = c.recorder.latest(c.settings.pipeline.job_name)
        if run is None:
            return {"ok": True, "job_run": None, "message": "No job runs recorded yet."}
        return {
            "ok": True,
            "job_run": run.model_dump(mode="json"),
            "time_since_last_run": time_since(run.ran_at),
        }

    @app.api_route("/api/ingest", methods=["GET", "POST"], dependencies=[Depends(verify_trigger_secret)])
    def ingest(
        content_type: Optional[str] = Query(default=None, pattern="^(policy|finance)$"),
        group: Optional[str] = None,
        source: List[str] = Query(default=[]),
        source_pattern: Optional[str] = None,
        c: Components = Depends(get_components),
    ):
        if group and group.lower() not in [g.lower() for g in c.registry.groups()]:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown feed group: {group}")
        try:
            feeds = c.registry.select(
                content_type=content_type, group=group, sources=source, source_pattern=source_pattern
            )
        except re.error as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid source_pattern: {e}")
        if not feeds:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No enabled feeds match the filters")
        try:
            stats = c.pipeline.run(feeds, Deadline(c.settings.pipeline.inline_time_budget))
        except Exception as e:
            logger.exception("Ingestion failed: %s", e)
            raise HTTPException(500, f"Ingestion failed: {e}")
        return {
            "ok": True,
            "content_type": content_type or "all",
            "group": group,
            "feeds": [feed.name for feed in feeds],
            "stats": stats.model_dump(mode="json"),
        }

    @app.api_route("/api/enrich-images", methods=["GET", "POST"], dependencies=[Depends(verify_trigger_secret)])
    def enrich_images(
        limit: Optional[int] = Query(default=None, ge=1),
        c: Components = Depends(get_components),
    ):
        pipeline_settings = c.settings.pipeline
        try:
            stats = c.enricher.enrich_missing(
                limit or pipeline_settings.image_batch_limit,
                Deadline(pipeline_settings.inline_time_budget),
            )
        except Exception as e:
            logger.exception("Image enrichment failed: %s", e)
            raise HTTPException(500, f"Image enrichment failed: {e}")
        return {"ok": True, "stats": stats.model_dump(mode="json")}

    @app.api_route("/api/resummarize", methods=["GET", "POST"], dependencies=[Depends(verify_trigger_secret)])
    def resummarize_articles(
        limit: int = Query(default=20, ge=1, le=MAX_RESUMMARIZE_LIMIT),
        force: bool = False,
        c: Components = Depends(get_components),
    ):
        try:
            stats = resummarize(
                c.store, c.summarizer, limit=limit, force=force, delay=c.settings.pipeline.summary_delay
            )
        except SummarizerUnavailable as e:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
        except Exception as e:
            logger.exception("Resummarize failed: %s", e)
            raise HTTPException(500, f"Resummarize failed: {e}")
        return {"ok": True, "stats": stats.model_dump()}

    @app.api_route("/api/recategorize", methods=["GET", "POST"], dependencies=[Depends(verify_trigger_secret)])
    def recategorize_articles(c: Components = Depends(get_components)):
        try:
            stats = recategorize(c.store, c.categorizer)
        except Exception as e:
            logger.exception("Recategorize failed: %s", e)
            raise HTTPException(500, f"Recategorize failed: {e}")
        return {"ok": True, "stats": stats.model_dump()}

    @app.get("/api/debug-feeds", dependencies=[Depends(verify_trigger_secret)])
    def debug_feeds(c: Components = Depends(get_components)):
        results = c.fetcher.fetch_all(c.registry.enabled())
        by_type = {"policy": [], "finance": []}
        for result in results:
            by_type.setdefault(result.content_type, []).append({
                "name": result.source,
                "url": result.url,
                "content_type": result.content_type,
                "item_count": len(result.items),
                "error": result.error,
                "sample_titles": [item.title for item in result.items[:3]],
                "diagnostics": result.diagnostics.model_dump(),
            })
        stats = fetch_stats(results)
        stats.pop("per_source")
        return {"ok": True, "summary": stats, "feeds": by_type}

    return app


app = create_app()
