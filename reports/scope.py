"""
reports/scope.py -- The selected (instance, run) pair, kept in the session.

The session is Starlette's signed cookie session, so these helpers take the
plain request.session mapping. Keys:

  currentInstanceId  -- selected instance id
  currentRunId       -- selected run id
  analysisResults    -- output of the last upload (JSON-able dict)

Switching instance clears the run and the analysis results; logout clears all
three. Nothing outside this module reads the keys directly.
"""

import logging
from collections.abc import MutableMapping
from typing import Any, Optional

from core.models import Scope

logger = logging.getLogger("insightshield.scope")

INSTANCE_KEY = "currentInstanceId"
RUN_KEY = "currentRunId"
RESULTS_KEY = "analysisResults"


def _as_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def read_scope(session: MutableMapping) -> Scope:
    return Scope(instance_id=_as_int(session.get(INSTANCE_KEY)), run_id=_as_int(session.get(RUN_KEY)))


def select_instance(session: MutableMapping, instance_id: int, run_id: Optional[int] = None) -> Scope:
    """Point the session at instance_id, dropping any run from another instance."""
    previous = read_scope(session)
    if previous.instance_id != instance_id:
        session.pop(RESULTS_KEY, None)
    session[INSTANCE_KEY] = instance_id
    if run_id is None:
        session.pop(RUN_KEY, None)
    else:
        session[RUN_KEY] = run_id
    logger.debug("Scope changed %s -> %s:%s", previous.cache_key, instance_id, run_id)
    return read_scope(session)


def select_run(session: MutableMapping, run_id: int) -> Scope:
    session[RUN_KEY] = run_id
    return read_scope(session)


def clear_scope(session: MutableMapping) -> None:
    for key in (INSTANCE_KEY, RUN_KEY, RESULTS_KEY):
        session.pop(key, None)


def store_analysis_results(session: MutableMapping, results: dict) -> None:
    session[RESULTS_KEY] = results


def read_analysis_results(session: MutableMapping) -> Optional[dict]:
    return session.get(RESULTS_KEY)
