"""
SurveyFlow Engine Package

Runs branching questionnaires authored as directed acyclic graphs.

Components:
------------
    validator   pre-publish structural checks on an editor design
    evaluator   condition (rule / group) evaluation against answers
    runtime     next-node resolution, skip logic, branch chaining
    quota       global and demographic completion caps
    batcher     windowed, idempotent reconciliation of submission events

ARCHITECTURAL GUARANTEE:
------------------------
The validator, evaluator and runtime contain ZERO knowledge of:
    - Databases or caches
    - Transport (HTTP, queues)
    - Rendering of question widgets

Persistence lives behind surveyflow.store and surveyflow.cache only.
"""

__version__ = "0.1.0"
