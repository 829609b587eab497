"""Model-backed components of the report triage pipeline.

ModelClient / create_model_client:
    Single remote model handle chosen at startup from an ordered list.

RemoteClassifier:
    Image and text classification through the remote model.

SafetyFilter:
    Content-appropriateness gate for report photos (fails open).

Example:
    >>> from agents import create_model_client, RemoteClassifier, SafetyFilter
    >>> client = create_model_client(config)
    >>> classifier = RemoteClassifier(client, config)
    >>> safety = SafetyFilter(client, config)
"""

from agents.client import ModelClient, ModelUnavailableError, RemoteModelError, create_model_client
from agents.classifier import RemoteClassifier
from agents.safety import FAIL_OPEN_VERDICT, SafetyFilter

__all__ = [
    "ModelClient",
    "ModelUnavailableError",
    "RemoteModelError",
    "create_model_client",
    "RemoteClassifier",
    "FAIL_OPEN_VERDICT",
    "SafetyFilter",
]
