"""
Workflow publishing: validate a design, then store it as a new version.

A published version is never edited. Publishing again writes version n+1;
respondents already traversing version n keep their Graph object.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

from surveyflow.compiler import compile_runtime_json
from surveyflow.errors import SurveyNotFound
from surveyflow.logging import get_logger
from surveyflow.model import Graph
from surveyflow.serialization import graph_from_dict
from surveyflow.store import ResponseStore
from surveyflow.validator import ValidationResult, validate

logger = get_logger(__name__)


@dataclass(frozen=True)
class PublishResult:
    validation: ValidationResult
    version: Optional[int] = None
    workflow_id: Optional[str] = None

    @property
    def published(self) -> bool:
        return self.version is not None


def publish_workflow(store: ResponseStore, survey_id: str, nodes: Sequence[Mapping[str, Any]],
                     edges: Sequence[Mapping[str, Any]]) -> PublishResult:
    """
    Validate and, when valid, persist a new immutable version.

    An invalid design is not stored; the returned PublishResult carries the
    validation errors and no version.
    """
    validation = validate(nodes, edges)
    if not validation.is_valid:
        logger.info("workflow_rejected", survey_id=survey_id,
                    errors=[issue.code for issue in validation.errors if issue.severity == "error"])
        return PublishResult(validation=validation)

    workflow_id = str(uuid.uuid4())
    runtime_json = compile_runtime_json(nodes, edges)
    design_json = {"nodes": [dict(n) for n in nodes], "edges": [dict(e) for e in edges]}
    with store.transaction() as conn:
        version = store.insert_workflow(conn, workflow_id, survey_id, runtime_json, design_json)

    logger.info("workflow_published", survey_id=survey_id, version=version, nodes=len(runtime_json))
    return PublishResult(validation=validation, version=version, workflow_id=workflow_id)


def load_published_graph(store: ResponseStore, survey_id: str, version: Optional[int] = None) -> Graph:
    """
    Latest published Graph for a survey (or the given version).

    Raises:
        SurveyNotFound: No such survey workflow / version
    """
    with store.connection() as conn:
        row = store.get_workflow(conn, survey_id, version)
    if row is None:
        suffix = f" version {version}" if version is not None else ""
        raise SurveyNotFound(f"No published workflow for survey {survey_id}{suffix}")
    return graph_from_dict(json.loads(row.runtime_json), survey_id=survey_id, version=row.version)
