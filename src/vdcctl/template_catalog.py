"""Template catalog.

Reads VM template documents from a template store and normalizes them into
Template entities. Two stores are supported:

- ClusterTemplateSource: templates served by the control plane
  (template.openshift.io/v1 Template objects in a namespace)
- DirectoryTemplateSource: YAML template documents in a local directory

Display name, OS, flavor, icon and category are detected with ordered rule tables
evaluated first-match-wins. Each table is module-level data so every rule can
be exercised on its own.

Template document shape (abridged):
    metadata:
      name: rhel9-server-small
      uid: 4f1c...
      annotations: {openshift.io/display-name: ..., iconClass: ...}
      labels: {flavor.template.kubevirt.io/small: "true", ...}
    parameters:
      - {name: NAME, required: true}
      - {name: SIZE, value: 30Gi}
    objects:
      - {apiVersion: kubevirt.io/v1, kind: VirtualMachine, ...}
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Generic, Protocol, TypeVar

import yaml

from vdcctl.errors import MalformedObjectError, NotFoundError
from vdcctl.kube_client import TEMPLATES, ClusterClient
from vdcctl.models import Template, TemplateParameter
from vdcctl.unstructured import nested_list, nested_map, nested_str

logger = logging.getLogger(__name__)

T = TypeVar("T")

DISPLAY_NAME_ANNOTATION = "openshift.io/display-name"
OS_NAME_ANNOTATION = "name.os.template.kubevirt.io"
LONG_DESCRIPTION_ANNOTATION = "template.openshift.io/long-description"
OS_TYPE_ANNOTATION = "os.template.kubevirt.io/name"
OS_VERSION_ANNOTATION = "os.template.kubevirt.io/version"
OPERATING_SYSTEM_ANNOTATION = "template.kubevirt.io/operating-system"
OS_LABEL_PREFIX = "os.template.kubevirt.io/"
FLAVOR_LABEL_PREFIX = "flavor.template.kubevirt.io/"
IMAGES_ANNOTATION = "template.kubevirt.io/images"
CONTAINER_DISKS_ANNOTATION = "template.kubevirt.io/containerdisks"
ICON_CLASS_ANNOTATION = "iconClass"
TAGS_ANNOTATION = "tags"

MAX_LONG_DESCRIPTION_NAME = 80
DEFAULT_DESCRIPTION = "Virtual Machine template"
DEFAULT_OS = "Linux"
DEFAULT_FLAVOR = (1, "2Gi")
DEFAULT_DISK_SIZE = "20Gi"
DEFAULT_ICON = "fa fa-cube"

_ACRONYMS = {"vm", "db", "api", "cpu", "gpu", "app"}


@dataclass(frozen=True)
class TemplateView:
    """Read-only view of the template fields the rule tables look at."""

    name: str
    annotations: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)

    @property
    def lower_name(self) -> str:
        return self.name.lower()

    def annotation(self, key: str) -> str:
        return self.annotations.get(key, "")

    def label_is_true(self, key: str) -> bool:
        return self.labels.get(key) == "true"

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "TemplateView":
        return cls(
            name=nested_str(document, "metadata", "name") or "",
            annotations=_string_map(nested_map(document, "metadata", "annotations")),
            labels=_string_map(nested_map(document, "metadata", "labels")),
        )


@dataclass(frozen=True)
class Rule(Generic[T]):
    """One (predicate, result) row of a classification table."""

    name: str
    matches: Callable[[TemplateView], bool]
    result: Callable[[TemplateView], T]


def first_match(rules: Iterable[Rule[T]], view: TemplateView, default: T) -> T:
    """Evaluate rules in order and return the first matching result."""
    for rule in rules:
        if rule.matches(view):
            return rule.result(view)
    return default


def _annotation_rule(key: str) -> Rule[str]:
    return Rule(key, lambda v: bool(v.annotation(key)), lambda v: v.annotation(key))


def _name_contains(*needles: str) -> Callable[[TemplateView], bool]:
    return lambda v: any(needle in v.lower_name for needle in needles)


def _tags_contain(*needles: str) -> Callable[[TemplateView], bool]:
    return lambda v: any(needle in v.annotation(TAGS_ANNOTATION).lower() for needle in needles)


def _constant(value: T) -> Callable[[TemplateView], T]:
    return lambda _v: value


# ----------------------------------------------------------------------------
# Display name
# ----------------------------------------------------------------------------


def cleanup_template_name(name: str) -> str:
    """Turn a raw template name into a readable display name.

    Examples:
        >>> cleanup_template_name("rhel9-server-small")
        'Rhel9 Server Small VM'
        >>> cleanup_template_name("windows-2k22-vm")
        'Windows 2k22 VM'
    """
    if not name:
        return "VM"

    words = []
    for word in name.replace("-", " ").split():
        lower_word = word.lower()
        if len(word) <= 3 and lower_word in _ACRONYMS:
            words.append(word.upper())
        elif "2k" in lower_word:
            words.append(word[:1].upper() + word[1:])
        elif lower_word.startswith("v") and len(word) <= 3:
            words.append(word.upper())
        else:
            words.append(word[:1].upper() + word[1:])

    result = " ".join(words)
    if "vm" not in result.lower():
        result += " VM"
    return result


DISPLAY_NAME_RULES: tuple[Rule[str], ...] = (
    _annotation_rule(DISPLAY_NAME_ANNOTATION),
    _annotation_rule(OS_NAME_ANNOTATION),
    Rule(
        LONG_DESCRIPTION_ANNOTATION,
        lambda v: 0 < len(v.annotation(LONG_DESCRIPTION_ANNOTATION)) < MAX_LONG_DESCRIPTION_NAME,
        lambda v: v.annotation(LONG_DESCRIPTION_ANNOTATION),
    ),
)

DESCRIPTION_RULES: tuple[Rule[str], ...] = tuple(
    _annotation_rule(key)
    for key in (
        "openshift.io/description",
        "description",
        LONG_DESCRIPTION_ANNOTATION,
        DISPLAY_NAME_ANNOTATION,
    )
)


# ----------------------------------------------------------------------------
# Operating system
# ----------------------------------------------------------------------------

OS_NAME_HINTS: tuple[tuple[str, str], ...] = (
    ("rhel", "Red Hat Enterprise Linux"),
    ("centos", "CentOS Stream"),
    ("fedora", "Fedora"),
    ("ubuntu", "Ubuntu"),
    ("windows", "Microsoft Windows"),
)


def _os_label(view: TemplateView) -> str | None:
    for label in sorted(view.labels):
        if label.startswith(OS_LABEL_PREFIX) and view.label_is_true(label):
            return label[len(OS_LABEL_PREFIX) :]
    return None


def _os_label_result(view: TemplateView) -> tuple[str, str]:
    os_name = (_os_label(view) or "").replace("_", " ")
    return os_name.title(), ""


OS_RULES: tuple[Rule[tuple[str, str]], ...] = (
    Rule(
        OS_TYPE_ANNOTATION,
        lambda v: bool(v.annotation(OS_TYPE_ANNOTATION)),
        lambda v: (v.annotation(OS_TYPE_ANNOTATION), v.annotation(OS_VERSION_ANNOTATION)),
    ),
    Rule(
        OPERATING_SYSTEM_ANNOTATION,
        lambda v: bool(v.annotation(OPERATING_SYSTEM_ANNOTATION)),
        lambda v: (v.annotation(OPERATING_SYSTEM_ANNOTATION), ""),
    ),
    Rule("os-label", lambda v: _os_label(v) is not None, _os_label_result),
    *(
        Rule(f"name:{hint}", _name_contains(hint), _constant((os_name, "")))
        for hint, os_name in OS_NAME_HINTS
    ),
)


# ----------------------------------------------------------------------------
# Flavor (CPU cores, memory)
# ----------------------------------------------------------------------------

FLAVORS: tuple[tuple[str, tuple[int, str]], ...] = (
    ("tiny", (1, "1Gi")),
    ("small", (1, "2Gi")),
    ("medium", (1, "4Gi")),
    ("large", (2, "8Gi")),
)

FLAVOR_RULES: tuple[Rule[tuple[int, str]], ...] = (
    *(
        Rule(
            f"label:{flavor}",
            lambda v, key=f"{FLAVOR_LABEL_PREFIX}{flavor}": v.label_is_true(key),
            _constant(resources),
        )
        for flavor, resources in FLAVORS
    ),
    *(
        Rule(f"name:{flavor}", _name_contains(flavor), _constant(resources))
        for flavor, resources in FLAVORS
    ),
)


# ----------------------------------------------------------------------------
# Image and icon
# ----------------------------------------------------------------------------

IMAGE_RULES: tuple[Rule[str], ...] = (
    _annotation_rule(IMAGES_ANNOTATION),
    _annotation_rule(CONTAINER_DISKS_ANNOTATION),
)

TAG_ICON_HINTS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("rhel", "red hat"), "fa fa-redhat"),
    (("ubuntu",), "fa fa-ubuntu"),
    (("centos",), "fa fa-centos"),
    (("fedora",), "fa fa-fedora"),
    (("windows",), "fa fa-windows"),
)

NAME_ICON_HINTS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("cache", "redis"), "fa fa-database"),
    (("mysql", "mariadb"), "fa fa-database"),
    (("postgresql", "postgres"), "fa fa-database"),
    (("mongodb", "mongo"), "fa fa-database"),
    (("php", "cake"), "fa fa-code"),
    (("java", "spring"), "fa fa-code"),
    (("nodejs", "node"), "fa fa-code"),
    (("python", "django"), "fa fa-code"),
    (("rhel", "red-hat"), "fa fa-redhat"),
    (("centos",), "fa fa-centos"),
    (("ubuntu",), "fa fa-ubuntu"),
    (("fedora",), "fa fa-fedora"),
    (("windows",), "fa fa-windows"),
    (("vm",), "fa fa-desktop"),
)

ICON_RULES: tuple[Rule[str], ...] = (
    _annotation_rule(ICON_CLASS_ANNOTATION),
    *(
        Rule(f"tags:{needles[0]}", _tags_contain(*needles), _constant(icon))
        for needles, icon in TAG_ICON_HINTS
    ),
    *(
        Rule(f"name:{needles[0]}", _name_contains(*needles), _constant(icon))
        for needles, icon in NAME_ICON_HINTS
    ),
)


# ----------------------------------------------------------------------------
# Category and featured templates
# ----------------------------------------------------------------------------

CATEGORY_OS = "Operating System"
CATEGORY_DATABASE = "Database"
CATEGORY_MIDDLEWARE = "Middleware"
CATEGORY_APPLICATION = "Application"
TEMPLATE_CATEGORIES = (CATEGORY_OS, CATEGORY_DATABASE, CATEGORY_MIDDLEWARE, CATEGORY_APPLICATION)


def _description_contains(*needles: str) -> Callable[[TemplateView], bool]:
    def matches(view: TemplateView) -> bool:
        description = first_match(DESCRIPTION_RULES, view, DEFAULT_DESCRIPTION).lower()
        return any(needle in description for needle in needles)

    return matches


CATEGORY_HINTS: tuple[tuple[str, tuple[str, ...], str], ...] = (
    (CATEGORY_DATABASE, ("postgres", "mysql", "mariadb", "mongodb"), "database"),
    (CATEGORY_MIDDLEWARE, ("redis", "nginx", "apache", "tomcat"), "middleware"),
    (CATEGORY_APPLICATION, ("app", "service"), "application"),
)

CATEGORY_RULES: tuple[Rule[str], ...] = tuple(
    rule
    for category, names, keyword in CATEGORY_HINTS
    for rule in (
        Rule(f"name:{category.lower()}", _name_contains(*names), _constant(category)),
        Rule(f"description:{keyword}", _description_contains(keyword), _constant(category)),
    )
)

FEATURED_TEMPLATES = (
    "rhel9-server-small",
    "rhel8-server-small",
    "centos8-server-small",
    "fedora-server-small",
    "ubuntu-server-small",
)

FEATURED_RULES: tuple[Rule[bool], ...] = tuple(
    Rule(f"name:{name}", _name_contains(name), _constant(True)) for name in FEATURED_TEMPLATES
)


def determine_category(view: TemplateView) -> str:
    """Classify a template as database, middleware, application or OS."""
    return first_match(CATEGORY_RULES, view, CATEGORY_OS)


def is_featured(view: TemplateView) -> bool:
    return first_match(FEATURED_RULES, view, False)


# ----------------------------------------------------------------------------
# Conversion
# ----------------------------------------------------------------------------


def convert_template(document: dict[str, Any]) -> Template:
    """Normalize a template document into a Template.

    Raises:
        MalformedObjectError: If the document is not a mapping
    """
    if not isinstance(document, dict):
        raise MalformedObjectError(f"Template must be a mapping, got {type(document).__name__}")

    view = TemplateView.from_document(document)
    parameters = tuple(
        TemplateParameter.from_dict(entry)
        for entry in nested_list(document, "parameters") or []
        if isinstance(entry, dict) and entry.get("name")
    )
    objects = tuple(obj for obj in nested_list(document, "objects") or [] if isinstance(obj, dict))

    os_type, os_version = first_match(OS_RULES, view, (DEFAULT_OS, ""))
    cpu, memory = first_match(FLAVOR_RULES, view, DEFAULT_FLAVOR)

    return Template(
        id=nested_str(document, "metadata", "uid") or view.name,
        name=first_match(DISPLAY_NAME_RULES, view, None) or cleanup_template_name(view.name),
        template_name=view.name,
        description=first_match(DESCRIPTION_RULES, view, DEFAULT_DESCRIPTION),
        os_type=os_type,
        os_version=os_version,
        cpu=cpu,
        memory=memory,
        disk_size=_disk_size(parameters),
        namespace=nested_str(document, "metadata", "namespace") or "",
        image_url=first_match(IMAGE_RULES, view, ""),
        icon_class=first_match(ICON_RULES, view, DEFAULT_ICON),
        category=determine_category(view),
        featured=is_featured(view),
        parameters=parameters,
        objects=objects,
    )


def _disk_size(parameters: tuple[TemplateParameter, ...]) -> str:
    for parameter in parameters:
        if parameter.name in ("SIZE", "DISK_SIZE") and parameter.value:
            return parameter.value
    return DEFAULT_DISK_SIZE


def _string_map(data: dict[str, Any] | None) -> dict[str, str]:
    if not data:
        return {}
    return {str(k): "" if v is None else str(v) for k, v in data.items()}


# ----------------------------------------------------------------------------
# Template stores
# ----------------------------------------------------------------------------


class TemplateSource(Protocol):
    """Where template documents come from."""

    def list_documents(self) -> list[dict[str, Any]]:
        """Return all template documents."""

    def get_document(self, name: str) -> dict[str, Any]:
        """Return one template document, raising NotFoundError if absent."""


class ClusterTemplateSource:
    """Templates served by the control plane in one namespace."""

    def __init__(self, client: ClusterClient, namespace: str = "openshift"):
        self.client = client
        self.namespace = namespace

    def list_documents(self) -> list[dict[str, Any]]:
        return self.client.list_objects(TEMPLATES, self.namespace)

    def get_document(self, name: str) -> dict[str, Any]:
        return self.client.get(TEMPLATES, name, self.namespace)


class DirectoryTemplateSource:
    """YAML template documents stored in a local directory.

    Corrupted files are skipped and logged when listing.
    """

    def __init__(self, directory: Path | str):
        self.directory = Path(directory).expanduser()

    def _files(self) -> list[Path]:
        if not self.directory.exists():
            return []
        return sorted([*self.directory.glob("*.yaml"), *self.directory.glob("*.yml")])

    def list_documents(self) -> list[dict[str, Any]]:
        documents = []
        for template_file in self._files():
            try:
                with open(template_file) as f:
                    data = yaml.safe_load(f)
            except (OSError, yaml.YAMLError) as e:
                logger.warning(f"Skipping corrupted template file {template_file.name}: {e}")
                continue

            if isinstance(data, dict):
                documents.append(data)
            else:
                logger.warning(f"Skipping template file {template_file.name}: not a mapping")
        return documents

    def get_document(self, name: str) -> dict[str, Any]:
        for document in self.list_documents():
            if nested_str(document, "metadata", "name") == name:
                return document
        raise NotFoundError(f"Template '{name}' not found in {self.directory}")


class TemplateCatalog:
    """Normalized view over a template store."""

    def __init__(self, source: TemplateSource):
        self.source = source

    def list_templates(self, category: str | None = None) -> list[Template]:
        """List templates, sorted by store name.

        Templates sharing an id are listed once (the first one read wins).

        Args:
            category: Only list templates of this category (optional)
        """
        templates = []
        seen: set[str] = set()
        for document in self.source.list_documents():
            try:
                template = convert_template(document)
            except MalformedObjectError as e:
                logger.warning(f"Skipping malformed template: {e}")
                continue

            if template.id in seen:
                logger.debug(f"Skipping duplicate template {template.template_name}")
                continue
            seen.add(template.id)
            if category and template.category != category:
                continue
            templates.append(template)

        templates.sort(key=lambda t: t.template_name)
        return templates

    def get_template(self, name: str) -> Template:
        """Resolve one template by store name.

        Raises:
            NotFoundError: If the template does not exist
        """
        template = convert_template(self.source.get_document(name))
        logger.debug(f"Resolved template {name} -> {template.name}")
        return template

    @staticmethod
    def convert(document: dict[str, Any]) -> Template:
        """Normalize a single template document."""
        return convert_template(document)


__all__ = [
    "CATEGORY_RULES",
    "DESCRIPTION_RULES",
    "DISPLAY_NAME_RULES",
    "FEATURED_RULES",
    "FLAVOR_RULES",
    "ICON_RULES",
    "IMAGE_RULES",
    "OS_RULES",
    "TEMPLATE_CATEGORIES",
    "ClusterTemplateSource",
    "DirectoryTemplateSource",
    "Rule",
    "TemplateCatalog",
    "TemplateSource",
    "TemplateView",
    "cleanup_template_name",
    "convert_template",
    "determine_category",
    "first_match",
    "is_featured",
]
