import logging
from typing import List, Optional

# FastAPI creates the app object and defines the routes
from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse

from collaborators import Collaborators
from diagnostics.executor import Executor
from diagnostics.models import Context, Role
from probes import registry_for
from reporting.assembler import Assemble
from reporting.recommendations import Recommendations
from reporting.targets import InvalidTarget, require_domains, require_targets

from .cli import default_targets
from .settings import Settings, SettingsError

logger = logging.getLogger(__name__)

app = FastAPI(title="dnsmasq doctor")

assembler = Assemble()


def get_settings() -> Settings:
    try:
        return Settings.from_env()
    except SettingsError as e:
        raise HTTPException(status_code=500, detail=str(e))


def get_collaborators() -> Collaborators:
    return Collaborators.local()


def _role(role: str) -> Role:
    try:
        return Role(role)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown role: {role}")


@app.get("/health")
def health():
    return {"status": "ok"}


# The probe plan for a role without running anything
@app.get("/probes")
def probes(role: str = Query("server")):
    r = _role(role)
    return {"role": r.value, "probes": [p.describe() for p in registry_for(r)]}


# Run the diagnostics and return the structured report document
@app.get("/run")
def run(
    role: str = Query("server"),
    target: Optional[List[str]] = Query(None),
    domain: Optional[List[str]] = Query(None),
    timeout: Optional[float] = Query(None, gt=0, le=300),
    settings: Settings = Depends(get_settings),
    env: Collaborators = Depends(get_collaborators),
):
    r = _role(role)
    try:
        domains = require_domains(domain or [])
        targets = require_targets(r, target or []) or default_targets(r, env, None)
    except InvalidTarget as e:
        raise HTTPException(status_code=400, detail=str(e))

    context = Context(
        role=r,
        targets=tuple(targets),
        privileged=env.system.is_privileged(),
        service=settings.service,
        config_file=settings.config_file,
        config_dir=settings.config_dir,
        env=env,
        **({"domains": tuple(domains), "test_domain": domains[0]} if domains else {}),
    )
    deadline = settings.timeout if timeout is None else timeout
    report = Executor(concurrency_limit=settings.concurrency, global_deadline=deadline).run(registry_for(r), context)
    document = assembler.build(
        report,
        Recommendations.derive(report),
        skipped_is_failure=settings.skipped_is_failure,
        meta={"source": "api"},
    )
    logger.info("api run %s for role %s: %s", report.run_id, r.value, document["summary"])
    return JSONResponse(content=document)
