import os
from datetime import datetime
from functools import lru_cache
from typing import Optional

import numpy as np
from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, Field

from packages.water_usage_core.engine import DistributionRequest, distribute_request, validate_request
from packages.water_usage_core.errors import DistributionError
from packages.water_usage_core.memory import AdaptiveWeightMemory, InMemoryStore, JsonFileStore
from packages.water_usage_core.policy import DEFAULT_POLICY
from packages.water_usage_core.profiles import UsageProfile
from packages.water_usage_core.report import summarize

app = FastAPI(title="Smart Water Estimator API", version="1.0.0")


class DistributeBody(BaseModel):
    start_value: float
    end_value: float
    divisions: int = Field(default=24, ge=1, le=744)  # up to a 31-day month of hours
    start_hour: Optional[int] = Field(default=None, ge=0, le=23)  # defaults to the current hour
    profile: UsageProfile = UsageProfile.RESIDENTIAL
    precision: int = Field(default=1, ge=0, le=3)
    seed: Optional[int] = None


@lru_cache(maxsize=1)
def get_memory() -> AdaptiveWeightMemory:
    path = os.environ.get("ESTIMATOR_MEMORY_PATH")
    store = JsonFileStore(path) if path else InMemoryStore()
    return AdaptiveWeightMemory(store)


@app.post("/usage/distribute")
def usage_distribute(body: DistributeBody, memory: AdaptiveWeightMemory = Depends(get_memory)):
    start_hour = body.start_hour if body.start_hour is not None else datetime.now().hour
    request = DistributionRequest(
        start_value=body.start_value,
        end_value=body.end_value,
        bucket_count=body.divisions,
        start_offset=start_hour,
        profile=body.profile,
        precision=body.precision,
    )
    # engine returns [] for bad input; tell the user why
    try:
        validate_request(request)
    except DistributionError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    rng = np.random.default_rng(body.seed)
    results = distribute_request(request, memory=memory, rng=rng)

    return {
        "results": [r.to_dict() for r in results],
        "summary": summarize(results, body.precision),
        "total": round(request.total, body.precision),
        "precision": body.precision,
        "profile": body.profile.value,
        "method_version": DEFAULT_POLICY.method_version,
    }


@app.get("/usage/memory")
def usage_memory(memory: AdaptiveWeightMemory = Depends(get_memory)):
    learned = memory.biases()
    return {"hours": {f"{h:02d}:00": round(bias, 6) for h, bias in sorted(learned.items())}}
