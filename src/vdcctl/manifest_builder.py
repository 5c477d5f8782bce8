"""Template materialization.

Turns a Template plus a DeployRequest into concrete cluster objects and
submits them in order.

Pipeline:
    1. Bind NAME (sanitized), NAMESPACE and SIZE into the parameter list
    2. Fill generated parameters and reject required parameters left empty
    3. Substitute ${PARAM} references inside every string of every object
    4. Resolve each object's kind to its addressable resource
    5. Target the request namespace and submit; the first failure aborts

Substitution walks the parsed documents, never serialized text. Each string
is scanned once, so a parameter value that itself contains "${OTHER}" is
inserted literally. A string that is exactly "${{PARAM}}" is replaced by the
parameter value read as a YAML scalar, which allows non-string fields
(replicas: ${{REPLICAS}}).
"""

import copy
import logging
import re
import secrets
import string
from typing import Any

import yaml

from vdcctl.call_context import CallContext
from vdcctl.errors import MaterializationError, ProvisioningError
from vdcctl.kube_client import ClusterClient, ResourceRef
from vdcctl.models import DeployRequest, Template, TemplateParameter
from vdcctl.naming import sanitize_name

logger = logging.getLogger(__name__)

KIND_TO_RESOURCE: dict[str, str] = {
    "VirtualMachine": "virtualmachines",
    "VirtualMachineInstance": "virtualmachineinstances",
    "DataVolume": "datavolumes",
    "PersistentVolumeClaim": "persistentvolumeclaims",
    "Secret": "secrets",
    "ConfigMap": "configmaps",
    "Service": "services",
    "ServiceAccount": "serviceaccounts",
    "Role": "roles",
    "RoleBinding": "rolebindings",
    "Deployment": "deployments",
    "Pod": "pods",
}

_REFERENCE = re.compile(r"\$\{\{([A-Za-z0-9_]+)\}\}|\$\{([A-Za-z0-9_]+)\}")
_EXACT_SCALAR_REFERENCE = re.compile(r"^\$\{\{([A-Za-z0-9_]+)\}\}$")
_GENERATOR_TOKEN = re.compile(r"\[([^\]]+)\]\{(\d+)\}")
_CHARSET_RANGE = re.compile(r"(.)-(.)")

_CHARSET_ESCAPES = {
    r"\w": string.ascii_letters + string.digits + "_",
    r"\d": string.digits,
    r"\a": string.ascii_letters,
    r"\A": string.punctuation,
}

MAX_GENERATED_LENGTH = 255


def resource_for_kind(kind: str) -> str:
    """Map an object kind to its plural resource name."""
    return KIND_TO_RESOURCE.get(kind) or f"{kind.lower()}s"


def resource_ref_for(obj: dict[str, Any]) -> ResourceRef:
    """Resolve the addressable resource for a materialized object.

    Raises:
        MaterializationError: If the object has no kind or apiVersion
    """
    kind = obj.get("kind")
    api_version = obj.get("apiVersion")
    if not isinstance(kind, str) or not kind:
        raise MaterializationError("Template object has no kind")
    if not isinstance(api_version, str) or not api_version:
        raise MaterializationError(f"Template object of kind {kind} has no apiVersion")
    return ResourceRef.from_api_version(api_version, resource_for_kind(kind))


def _expand_charset(spec: str) -> str:
    for escape, chars in _CHARSET_ESCAPES.items():
        spec = spec.replace(escape, chars)
    return _CHARSET_RANGE.sub(
        lambda m: "".join(chr(c) for c in range(ord(m.group(1)), ord(m.group(2)) + 1)), spec
    )


def generate_value(expression: str) -> str:
    """Produce a random value from a "[charset]{n}" generator expression.

    Text outside bracket tokens is copied verbatim.

    Examples:
        >>> len(generate_value("[a-z0-9]{8}"))
        8

    Raises:
        MaterializationError: If the expression is empty or yields nothing
    """
    if not expression:
        raise MaterializationError("Empty generator expression")

    def _token(match: re.Match[str]) -> str:
        charset = _expand_charset(match.group(1))
        length = int(match.group(2))
        if not charset or length > MAX_GENERATED_LENGTH:
            raise MaterializationError(f"Unsupported generator expression: {expression}")
        return "".join(secrets.choice(charset) for _ in range(length))

    value = _GENERATOR_TOKEN.sub(_token, expression)
    if not value:
        raise MaterializationError(f"Generator expression produced no value: {expression}")
    return value


def bind_parameters(template: Template, request: DeployRequest) -> dict[str, str]:
    """Resolve every template parameter to a value.

    Args:
        template: Template whose parameters are bound
        request: Deploy request supplying NAME, NAMESPACE and optional SIZE

    Returns:
        Mapping of parameter name to value

    Raises:
        MaterializationError: If a required parameter ends up empty
    """
    overrides = {
        "NAME": sanitize_name(request.vm_name),
        "NAMESPACE": request.target_namespace,
    }
    if request.disk_size:
        overrides["SIZE"] = request.disk_size

    values: dict[str, str] = {}
    for parameter in template.parameters:
        values[parameter.name] = _parameter_value(parameter, overrides)

    missing = [p.name for p in template.parameters if p.required and not values[p.name]]
    if missing:
        raise MaterializationError(
            f"Template {template.template_name} is missing required parameters: "
            f"{', '.join(missing)}"
        )
    return values


def _parameter_value(parameter: TemplateParameter, overrides: dict[str, str]) -> str:
    if parameter.name in overrides:
        return overrides[parameter.name]
    if parameter.value:
        return parameter.value
    if parameter.generate == "expression":
        return generate_value(parameter.from_ or "")
    return ""


def _scalar(value: str) -> Any:
    try:
        parsed = yaml.safe_load(value)
    except yaml.YAMLError:
        return value
    if isinstance(parsed, (dict, list)):
        return value
    return parsed


def substitute(node: Any, values: dict[str, str]) -> Any:
    """Return a copy of node with parameter references replaced.

    Unknown references are left untouched. Mapping keys are not substituted.
    """
    if isinstance(node, dict):
        return {key: substitute(item, values) for key, item in node.items()}
    if isinstance(node, list):
        return [substitute(item, values) for item in node]
    if not isinstance(node, str):
        return node

    exact = _EXACT_SCALAR_REFERENCE.match(node)
    if exact and exact.group(1) in values:
        return _scalar(values[exact.group(1)])

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1) or match.group(2)
        return values.get(name, match.group(0))

    return _REFERENCE.sub(_replace, node)


def materialize(
    template: Template,
    request: DeployRequest,
    labels: dict[str, str] | None = None,
    annotations: dict[str, str] | None = None,
) -> list[dict[str, Any]]:
    """Materialize a template's objects for a deploy request.

    Args:
        template: Template to materialize
        request: Deploy request naming the VM and target namespace
        labels: Labels merged into every object (optional)
        annotations: Annotations merged into every object (optional)

    Returns:
        Deployable objects, each targeted at the request namespace

    Raises:
        MaterializationError: If parameters cannot be bound or an object is
            missing its kind or apiVersion
    """
    if not template.objects:
        raise MaterializationError(f"Template {template.template_name} has no objects")

    values = bind_parameters(template, request)
    objects = []
    for index, raw in enumerate(template.objects):
        if not isinstance(raw, dict):
            raise MaterializationError(
                f"Object {index} of template {template.template_name} is not a mapping"
            )
        obj = substitute(copy.deepcopy(raw), values)
        resource_ref_for(obj)

        metadata = obj.setdefault("metadata", {})
        if not isinstance(metadata, dict):
            raise MaterializationError(
                f"Object {index} of template {template.template_name} has invalid metadata"
            )
        metadata["namespace"] = request.target_namespace
        if labels:
            metadata["labels"] = {**(metadata.get("labels") or {}), **labels}
        if annotations:
            metadata["annotations"] = {**(metadata.get("annotations") or {}), **annotations}
        objects.append(obj)

    logger.debug(
        f"Materialized {len(objects)} objects from {template.template_name} "
        f"for {request.target_namespace}"
    )
    return objects


class ManifestBuilder:
    """Materialize templates and submit the resulting objects."""

    def __init__(self, client: ClusterClient):
        self.client = client

    materialize = staticmethod(materialize)

    def submit(
        self,
        objects: list[dict[str, Any]],
        namespace: str,
        ctx: CallContext | None = None,
    ) -> list[dict[str, Any]]:
        """Create objects in order, stopping at the first failure.

        Raises:
            MaterializationError: Naming the kind/name that failed
        """
        created = []
        for obj in objects:
            kind = obj.get("kind", "")
            name = (obj.get("metadata") or {}).get("name", "")
            ref = resource_ref_for(obj)
            try:
                created.append(self.client.create(ref, obj, namespace, ctx))
            except ProvisioningError as e:
                raise MaterializationError(
                    f"Failed to create {kind}/{name} in namespace {namespace}: {e}"
                ) from e
            logger.info(f"Created {kind}/{name} in {namespace}")
        return created

    def deploy(
        self,
        template: Template,
        request: DeployRequest,
        ctx: CallContext | None = None,
        labels: dict[str, str] | None = None,
        annotations: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        """Materialize a template and submit its objects to the request namespace."""
        objects = materialize(template, request, labels, annotations)
        return self.submit(objects, request.target_namespace, ctx)


__all__ = [
    "KIND_TO_RESOURCE",
    "ManifestBuilder",
    "bind_parameters",
    "generate_value",
    "materialize",
    "resource_for_kind",
    "resource_ref_for",
    "substitute",
]
