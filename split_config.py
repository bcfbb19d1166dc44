"""Split configuration resolver for post-processed APK builds.

Reads a post-process XML configuration that describes how one APK is split
into variants (ABI, screen density, locale, Android SDK range, GL texture
format, device feature), validates it, and expands it into resolved output
artifacts with computed file names.

Usage:
    split-config --config post_process.xml --apk build/app.apk
"""

import argparse
import enum
import re
import sys
import xml.etree.ElementTree as ET
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TextIO, TypeVar


# ===--- CLI config contracts ---=== #


@dataclass(frozen=True)
class ResolveConfig:
    config_path: Path
    apk_name: str
    verbose: bool


VALID_ERROR_CODES = {
    "PATH_NOT_FOUND",
    "INVALID_APK_NAME",
}


class ConfigError(Exception):
    def __init__(self, code: str, message: str, suggestion: str | None = None):
        if code not in VALID_ERROR_CODES:
            raise ValueError(f"Unknown config error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion


def validate_path_exists(
    path: Path | None, flag: str, suggestion: str | None = None
) -> Path:
    if path is None:
        raise ConfigError(
            "PATH_NOT_FOUND",
            f"{flag} is required: no path provided.",
            suggestion or f"Pass the path explicitly: {flag} /path/to/resource",
        )
    if path.is_file():
        return path
    raise ConfigError(
        "PATH_NOT_FOUND",
        f"Path for {flag} does not exist: {path}",
        suggestion or "Provide an existing file for this flag.",
    )


def validate_apk_name(raw: str | None) -> str:
    """Return the file name component of an --apk value.

    The APK itself does not have to exist; only its name feeds the
    ${basename} and ${ext} placeholders.
    """
    name = Path(raw).name if raw else ""
    if name:
        return name
    raise ConfigError(
        "INVALID_APK_NAME",
        f"Invalid APK name: {raw!r}",
        "Pass the input APK file name, for example --apk build/app.apk.",
    )


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Resolve split APK artifacts from a post-process configuration"
    )

    parser.add_argument("--config", type=Path, default=None)
    parser.add_argument("--apk", type=str, default=None)
    parser.add_argument("--verbose", action="store_true", default=False)

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_argument_parser()
    return parser.parse_args(argv)


def validate_config(args: argparse.Namespace) -> ResolveConfig:
    config_path = validate_path_exists(
        args.config,
        "--config",
        "Pass the post-process XML file: --config /path/to/post_process.xml",
    )
    apk_name = validate_apk_name(args.apk)
    return ResolveConfig(
        config_path=config_path,
        apk_name=apk_name,
        verbose=bool(args.verbose),
    )


def build_config(argv: list[str] | None = None) -> ResolveConfig:
    return validate_config(parse_args(argv))


# ===--- Constants ---=== #

AAPT_XML_NS = "http://schemas.android.com/tools/aapt"
"""The only namespace URI accepted on the root element.

When present it is stripped from every element and attribute before the
tag handlers run."""

ROOT_ELEMENT = "post-process"
ARTIFACTS_ELEMENT = "artifacts"
GROUPS_ELEMENT = "groups"

PLACEHOLDER_BASENAME = "${basename}"
PLACEHOLDER_EXT = "${ext}"
PLACEHOLDER_ABI = "${abi}"
PLACEHOLDER_DENSITY = "${density}"
PLACEHOLDER_LOCALE = "${locale}"
PLACEHOLDER_SDK = "${sdk}"
PLACEHOLDER_FEATURE = "${feature}"
PLACEHOLDER_GL = "${gl}"

AXIS_LOCALE = "locale"
AXIS_DENSITY = "density"
AXIS_SDK = "sdk"
AXIS_OTHER = "other"

# Artifact attribute -> ConfiguredArtifact field.
ARTIFACT_GROUP_ATTRIBUTES: dict[str, str] = {
    "abi-group": "abi_group",
    "screen-density-group": "screen_density_group",
    "locale-group": "locale_group",
    "android-sdk-group": "android_sdk_group",
    "gl-texture-group": "gl_texture_group",
    "device-feature-group": "device_feature_group",
}

# android-sdk attribute -> AndroidSdk field.
SDK_VERSION_ATTRIBUTES: dict[str, str] = {
    "minSdkVersion": "min_sdk_version",
    "targetSdkVersion": "target_sdk_version",
    "maxSdkVersion": "max_sdk_version",
}


# ===--- Qualifier values ---=== #


class Abi(enum.Enum):
    ARMEABI = "armeabi"
    ARMEABI_V7A = "armeabi-v7a"
    ARM64_V8A = "arm64-v8a"
    X86 = "x86"
    X86_64 = "x86_64"
    MIPS = "mips"
    MIPS64 = "mips64"
    UNIVERSAL = "universal"


_STRING_TO_ABI: dict[str, Abi] = {abi.value: abi for abi in Abi}


def abi_from_string(text: str) -> Abi:
    """Look up an ABI by its name; raises KeyError for unknown names."""
    return _STRING_TO_ABI[text]


def abi_to_string(abi: Abi) -> str:
    return abi.value


DENSITY_NAMES: dict[str, int] = {
    "ldpi": 120,
    "mdpi": 160,
    "tvdpi": 213,
    "hdpi": 240,
    "xhdpi": 320,
    "xxhdpi": 480,
    "xxxhdpi": 640,
    "anydpi": 0xFFFE,
    "nodpi": 0xFFFF,
}
_DENSITY_TO_NAME: dict[int, str] = {dpi: name for name, dpi in DENSITY_NAMES.items()}

_DENSITY_DPI_RE = re.compile(r"^([1-9]\d*)dpi$")
_SDK_QUALIFIER_RE = re.compile(r"^v(\d+)$")
_LANGUAGE_RE = re.compile(r"^[a-z]{2,3}$")
_REGION_RE = re.compile(r"^r(?:[a-zA-Z]{2}|[0-9]{3})$")
_BCP47_RE = re.compile(r"^b\+[a-z]{2,3}(?:\+[a-z0-9]{2,8})*$")
_OTHER_QUALIFIER_RE = re.compile(
    r"^(?:mcc\d+|mnc\d+|ldrtl|ldltr|sw\d+dp|w\d+dp|h\d+dp"
    r"|small|normal|large|xlarge|long|notlong|round|notround"
    r"|widecg|nowidecg|highdr|lowdr|port|land|square"
    r"|car|desk|television|appliance|watch|vrheadset|night|notnight"
    r"|notouch|finger|stylus|keysexposed|keyshidden|keyssoft"
    r"|nokeys|qwerty|12key|navexposed|navhidden|nonav|dpad|trackball|wheel"
    r"|\d+x\d+)$"
)


@dataclass(frozen=True)
class QualifierValue:
    """A parsed resource qualifier string such as "en-rUS" or "xhdpi-v21".

    Only the locale, density and SDK axes are modelled individually. Any
    other recognised qualifier token is kept verbatim in `other` so that a
    value varying along an unexpected axis can still be detected by diff().

    Attributes:
        locale: Canonical locale, e.g. "en", "fr-rCA" or "b+sr+Latn".
        density: Density in dpi, including the anydpi/nodpi sentinels.
        sdk_version: Platform version qualifier, e.g. 21 for "v21".
        other: Remaining qualifier tokens, lowercased, in input order.
    """

    locale: str | None = None
    density: int | None = None
    sdk_version: int | None = None
    other: tuple[str, ...] = ()

    def without_sdk_version(self) -> "QualifierValue":
        return replace(self, sdk_version=None)

    def diff(self, other: "QualifierValue") -> frozenset[str]:
        """Return the names of the axes on which two values differ."""
        axes: set[str] = set()
        if self.locale != other.locale:
            axes.add(AXIS_LOCALE)
        if self.density != other.density:
            axes.add(AXIS_DENSITY)
        if self.sdk_version != other.sdk_version:
            axes.add(AXIS_SDK)
        if self.other != other.other:
            axes.add(AXIS_OTHER)
        return frozenset(axes)

    def __str__(self) -> str:
        parts: list[str] = []
        if self.locale is not None:
            parts.append(self.locale)
        parts.extend(self.other)
        if self.density is not None:
            parts.append(_DENSITY_TO_NAME.get(self.density, f"{self.density}dpi"))
        if self.sdk_version is not None:
            parts.append(f"v{self.sdk_version}")
        return "-".join(parts)


DEFAULT_QUALIFIER = QualifierValue()


def _canonical_bcp47(tag: str) -> str:
    subtags = tag.split("+")[1:]
    canonical = [subtags[0].lower()]
    for subtag in subtags[1:]:
        if len(subtag) == 4 and subtag.isalpha():
            canonical.append(subtag.title())
        elif len(subtag) in (2, 3):
            canonical.append(subtag.upper())
        else:
            canonical.append(subtag.lower())
    return "b+" + "+".join(canonical)


def parse_qualifier(text: str) -> QualifierValue | None:
    """Parse a dash-separated qualifier string into a QualifierValue.

    Returns DEFAULT_QUALIFIER for blank text and None when a token is not a
    recognised qualifier or an axis is given twice.
    """
    stripped = text.strip()
    if not stripped:
        return DEFAULT_QUALIFIER

    locale: str | None = None
    density: int | None = None
    sdk_version: int | None = None
    other: list[str] = []

    parts = stripped.split("-")
    index = 0
    while index < len(parts):
        part = parts[index]
        lowered = part.lower()
        dpi_match = _DENSITY_DPI_RE.match(lowered)
        sdk_match = _SDK_QUALIFIER_RE.match(lowered)

        if lowered in DENSITY_NAMES or dpi_match:
            if density is not None:
                return None
            density = DENSITY_NAMES[lowered] if dpi_match is None else int(dpi_match.group(1))
        elif sdk_match:
            if sdk_version is not None:
                return None
            sdk_version = int(sdk_match.group(1))
        elif _OTHER_QUALIFIER_RE.match(lowered):
            other.append(lowered)
        elif _BCP47_RE.match(lowered):
            if locale is not None:
                return None
            locale = _canonical_bcp47(part)
        elif _LANGUAGE_RE.match(lowered):
            if locale is not None:
                return None
            locale = lowered
            if index + 1 < len(parts) and _REGION_RE.match(parts[index + 1]):
                locale = f"{lowered}-r{parts[index + 1][1:].upper()}"
                index += 1
        else:
            return None
        index += 1

    return QualifierValue(
        locale=locale,
        density=density,
        sdk_version=sdk_version,
        other=tuple(other),
    )


_SDK_VERSION_RE = re.compile(r"^\d+$")


def parse_sdk_version(text: str) -> int | None:
    stripped = text.strip()
    if not _SDK_VERSION_RE.match(stripped):
        return None
    return int(stripped)


# ===--- Diagnostics ---=== #


class DiagLevel(enum.Enum):
    ERROR = "error"
    WARNING = "warning"
    NOTE = "note"


@dataclass(frozen=True)
class DiagMessage:
    """One diagnostic record.

    Attributes:
        level: Severity of the message.
        message: Human readable text.
        source: Optional context the message is scoped to, e.g. the resolved
            name of the artifact being processed.
    """

    level: DiagLevel
    message: str
    source: str | None = None

    def __str__(self) -> str:
        prefix = f"{self.source}: " if self.source else ""
        return f"{prefix}{self.level.value}: {self.message}"


class Diagnostics:
    """Sink for leveled diagnostic messages.

    Subclasses implement log(); error(), warn() and note() are conveniences.
    """

    def log(self, message: DiagMessage) -> None:
        raise NotImplementedError

    def error(self, text: str) -> None:
        self.log(DiagMessage(DiagLevel.ERROR, text))

    def warn(self, text: str) -> None:
        self.log(DiagMessage(DiagLevel.WARNING, text))

    def note(self, text: str) -> None:
        self.log(DiagMessage(DiagLevel.NOTE, text))


class NoopDiagnostics(Diagnostics):
    def log(self, message: DiagMessage) -> None:
        pass


class CollectingDiagnostics(Diagnostics):
    """Keeps every message in arrival order."""

    def __init__(self) -> None:
        self.messages: list[DiagMessage] = []

    def log(self, message: DiagMessage) -> None:
        self.messages.append(message)

    def _texts(self, level: DiagLevel) -> list[str]:
        return [m.message for m in self.messages if m.level is level]

    @property
    def errors(self) -> list[str]:
        return self._texts(DiagLevel.ERROR)

    @property
    def warnings(self) -> list[str]:
        return self._texts(DiagLevel.WARNING)

    @property
    def notes(self) -> list[str]:
        return self._texts(DiagLevel.NOTE)

    @property
    def has_errors(self) -> bool:
        return any(m.level is DiagLevel.ERROR for m in self.messages)


class PrintDiagnostics(Diagnostics):
    """Prints messages to a stream, stderr by default.

    Notes are only printed when verbose is set.
    """

    def __init__(self, stream: TextIO | None = None, verbose: bool = False):
        self.stream = stream
        self.verbose = verbose

    def log(self, message: DiagMessage) -> None:
        if message.level is DiagLevel.NOTE and not self.verbose:
            return
        print(str(message), file=self.stream if self.stream is not None else sys.stderr)


class SourcePathDiagnostics(Diagnostics):
    """Scopes every message to `source` before forwarding it to `parent`."""

    def __init__(self, source: str, parent: Diagnostics):
        self.source = source
        self.parent = parent
        self.error_found = False

    def log(self, message: DiagMessage) -> None:
        if message.level is DiagLevel.ERROR:
            self.error_found = True
        self.parent.log(replace(message, source=self.source))


# ===--- Configuration data model ---=== #


@dataclass(frozen=True)
class AndroidManifest:
    """Marker for a nested <manifest> element; it carries no fields yet."""


@dataclass(frozen=True)
class AndroidSdk:
    min_sdk_version: int | None = None
    target_sdk_version: int | None = None
    max_sdk_version: int | None = None
    manifest: AndroidManifest | None = None


@dataclass(frozen=True)
class GlTexture:
    name: str
    texture_paths: tuple[str, ...]


@dataclass(frozen=True)
class ConfiguredArtifact:
    """An artifact declaration before its group references are expanded.

    Attributes:
        version: Explicit version, or the previous artifact's version + 1.
        name: Literal name template; None to use the global artifact format.
        abi_group: Label of the referenced ABI group, if any. The other
            *_group fields work the same way for their axis.
    """

    version: int
    name: str | None = None
    abi_group: str | None = None
    screen_density_group: str | None = None
    locale_group: str | None = None
    android_sdk_group: str | None = None
    gl_texture_group: str | None = None
    device_feature_group: str | None = None

    def placeholder_values(self) -> tuple[tuple[str, str | None], ...]:
        return (
            (PLACEHOLDER_ABI, self.abi_group),
            (PLACEHOLDER_DENSITY, self.screen_density_group),
            (PLACEHOLDER_LOCALE, self.locale_group),
            (PLACEHOLDER_SDK, self.android_sdk_group),
            (PLACEHOLDER_FEATURE, self.device_feature_group),
            (PLACEHOLDER_GL, self.gl_texture_group),
        )

    def to_artifact_name(
        self, name_format: str, apk_name: str, diag: Diagnostics
    ) -> str | None:
        """Fill every placeholder in name_format for this artifact.

        Every axis placeholder is checked, so one call reports all of the
        contract violations in the template before returning None.

        Args:
            name_format: Name template, either the artifact's own name or the
                global artifact-format.
            apk_name: Input APK file name, e.g. "app.apk".
            diag: Sink for placeholder errors.

        Returns:
            The resolved file name, or None if any placeholder failed.
        """
        result = to_base_name(name_format, apk_name, diag)
        if result is None:
            return None

        valid = True
        for placeholder, value in self.placeholder_values():
            replaced = replace_placeholder(placeholder, value, result, diag)
            if replaced is None:
                valid = False
            else:
                result = replaced
        return result if valid else None

    def name_for(self, apk_name: str, diag: Diagnostics) -> str | None:
        """Resolve the artifact's own literal name; None if it has none."""
        if self.name is None:
            return None
        return self.to_artifact_name(self.name, apk_name, diag)


@dataclass
class PostProcessingConfiguration:
    """Everything extracted from one post-process document.

    Group mappings preserve insertion order. Populated only by the tag
    handlers during extract_configuration.
    """

    abi_groups: dict[str, list[Abi]] = field(default_factory=dict)
    screen_density_groups: dict[str, list[QualifierValue]] = field(
        default_factory=dict
    )
    locale_groups: dict[str, list[QualifierValue]] = field(default_factory=dict)
    android_sdk_groups: dict[str, AndroidSdk] = field(default_factory=dict)
    gl_texture_groups: dict[str, list[GlTexture]] = field(default_factory=dict)
    device_feature_groups: dict[str, list[str]] = field(default_factory=dict)
    artifacts: list[ConfiguredArtifact] = field(default_factory=list)
    artifact_format: str | None = None


@dataclass(frozen=True)
class OutputArtifact:
    """A fully resolved split artifact.

    Group contents are copied in group order. An axis the artifact does not
    reference resolves to an empty tuple (or None for android_sdk).
    """

    name: str
    version: int
    abis: tuple[Abi, ...] = ()
    screen_densities: tuple[QualifierValue, ...] = ()
    locales: tuple[QualifierValue, ...] = ()
    android_sdk: AndroidSdk | None = None
    features: tuple[str, ...] = ()
    textures: tuple[GlTexture, ...] = ()


# ===--- Name formatting ---=== #


def replace_placeholder(
    placeholder: str, value: str | None, name: str, diag: Diagnostics
) -> str | None:
    """Substitute one placeholder, enforcing the presence contract.

    The placeholder must appear exactly once when a value is available and
    not at all when it is not.

    Args:
        placeholder: Token to replace, e.g. "${abi}".
        value: Replacement text, or None when the artifact has no value.
        name: Current name template.
        diag: Sink for contract violations.

    Returns:
        The updated name, or None on a contract violation.
    """
    count = name.count(placeholder)
    if count == 0:
        if value is not None:
            diag.error(f"Missing placeholder for artifact: {placeholder}")
            return None
        return name

    if value is None:
        diag.error(f"Placeholder present but no value for artifact: {placeholder}")
        return None

    if count > 1:
        diag.error(f"Placeholder present multiple times: {placeholder}")
        return None

    return name.replace(placeholder, value)


def split_apk_name(apk_name: str) -> tuple[str, str]:
    """Split a file name into (base name, extension including the dot)."""
    dot = apk_name.rfind(".")
    if dot == -1:
        return apk_name, ""
    return apk_name[:dot], apk_name[dot:]


def to_base_name(name_format: str, apk_name: str, diag: Diagnostics) -> str | None:
    """Apply the ${basename} and ${ext} placeholders to a name template.

    Both are optional. When ${ext} is not used and the result does not
    already end with the input extension, the extension is appended.
    """
    base_name, ext = split_apk_name(apk_name)
    result: str | None = name_format

    if PLACEHOLDER_BASENAME in result:
        result = replace_placeholder(
            PLACEHOLDER_BASENAME, base_name or None, result, diag
        )
        if result is None:
            return None

    if PLACEHOLDER_EXT in result:
        # The placeholder takes the extension without its leading dot.
        return replace_placeholder(PLACEHOLDER_EXT, ext[1:] or None, result, diag)

    if not result.endswith(ext):
        result += ext
    return result


# ===--- Tag handlers ---=== #

TagHandler = Callable[[PostProcessingConfiguration, ET.Element, Diagnostics], bool]


def get_label(element: ET.Element, diag: Diagnostics) -> str:
    label = element.get("label", "")
    if not label:
        diag.error(f"No label found for element {element.tag}")
    return label


def element_text(element: ET.Element) -> str:
    return (element.text or "").strip()


def note_unknown_attributes(
    element: ET.Element, known: tuple[str, ...], diag: Diagnostics
) -> None:
    for name, value in element.attrib.items():
        if name not in known:
            diag.note(f"Unknown {element.tag} attribute: {name} = {value}")


def _claim_label(groups: dict, label: str, element: ET.Element, diag: Diagnostics) -> bool:
    if label in groups:
        diag.error(f"Duplicate label for {element.tag}: {label}")
        return False
    return True


_ARTIFACT_VERSION_RE = re.compile(r"^-?\d+$")


def artifact_handler(
    config: PostProcessingConfiguration, element: ET.Element, diag: Diagnostics
) -> bool:
    # The base APK counts as version 0.
    current_version = config.artifacts[-1].version if config.artifacts else 0

    fields: dict[str, str] = {}
    version: int | None = None
    for name, value in element.attrib.items():
        if name == "name":
            fields["name"] = value
        elif name == "version":
            if not _ARTIFACT_VERSION_RE.match(value.strip()):
                diag.error(f"Invalid artifact version: {value}")
                return False
            version = int(value.strip())
        elif name in ARTIFACT_GROUP_ATTRIBUTES:
            fields[ARTIFACT_GROUP_ATTRIBUTES[name]] = value
        else:
            diag.note(f"Unknown artifact attribute: {name} = {value}")

    config.artifacts.append(
        ConfiguredArtifact(
            version=version if version is not None else current_version + 1,
            **fields,
        )
    )
    return True


def artifact_format_handler(
    config: PostProcessingConfiguration, element: ET.Element, diag: Diagnostics
) -> bool:
    note_unknown_attributes(element, (), diag)
    if config.artifact_format is not None:
        diag.warn("Found multiple artifact-format tags. Using the last one.")
    config.artifact_format = element_text(element)
    return True


def abi_group_handler(
    config: PostProcessingConfiguration, element: ET.Element, diag: Diagnostics
) -> bool:
    label = get_label(element, diag)
    if not label or not _claim_label(config.abi_groups, label, element, diag):
        return False
    note_unknown_attributes(element, ("label",), diag)

    group = config.abi_groups.setdefault(label, [])
    valid = True
    for child in element:
        if child.tag != "abi":
            diag.error(f"Unexpected element in ABI group: {child.tag}")
            valid = False
            continue
        text = element_text(child)
        try:
            group.append(abi_from_string(text))
        except KeyError:
            diag.error(f"Unknown ABI in group {label}: {text}")
            valid = False
    return valid


def _qualifier_group(
    groups: dict[str, list[QualifierValue]],
    element: ET.Element,
    child_tag: str,
    axis: str,
    diag: Diagnostics,
) -> bool:
    label = get_label(element, diag)
    if not label or not _claim_label(groups, label, element, diag):
        return False
    note_unknown_attributes(element, ("label",), diag)

    group = groups.setdefault(label, [])
    valid = True
    for child in element:
        if child.tag != child_tag:
            diag.error(f"Unexpected element in {element.tag}: {child.tag}")
            valid = False
            continue
        text = element_text(child)
        parsed = parse_qualifier(text)
        if parsed is None:
            diag.error(f"Could not parse config descriptor for {child_tag}: {text}")
            valid = False
            continue
        # Stored with the minimum SDK version stripped out.
        value = parsed.without_sdk_version()
        if value.diff(DEFAULT_QUALIFIER) != {axis}:
            diag.error(f"Config descriptor for {child_tag} is not a {axis}: {text}")
            valid = False
            continue
        group.append(value)
    return valid


def screen_density_group_handler(
    config: PostProcessingConfiguration, element: ET.Element, diag: Diagnostics
) -> bool:
    return _qualifier_group(
        config.screen_density_groups, element, "screen-density", AXIS_DENSITY, diag
    )


def locale_group_handler(
    config: PostProcessingConfiguration, element: ET.Element, diag: Diagnostics
) -> bool:
    return _qualifier_group(config.locale_groups, element, "locale", AXIS_LOCALE, diag)


def _parse_android_sdk(child: ET.Element, diag: Diagnostics) -> AndroidSdk | None:
    versions: dict[str, int] = {}
    valid = True
    for name, value in child.attrib.items():
        if name not in SDK_VERSION_ATTRIBUTES:
            diag.warn(f"Unknown attribute: {name} = {value}")
            continue
        parsed = parse_sdk_version(value)
        if parsed is None:
            diag.error(f"Invalid attribute: {name} = {value}")
            valid = False
            continue
        versions[SDK_VERSION_ATTRIBUTES[name]] = parsed

    manifest: AndroidManifest | None = None
    for node in child:
        if node.tag != "manifest":
            diag.error(f"Unexpected element in android-sdk: {node.tag}")
            valid = False
        elif manifest is not None:
            diag.warn("Found multiple manifest tags. Ignoring duplicates.")
        else:
            manifest = AndroidManifest()

    if not valid:
        return None
    return AndroidSdk(**versions, manifest=manifest)


def android_sdk_group_handler(
    config: PostProcessingConfiguration, element: ET.Element, diag: Diagnostics
) -> bool:
    label = get_label(element, diag)
    if not label or not _claim_label(config.android_sdk_groups, label, element, diag):
        return False
    note_unknown_attributes(element, ("label",), diag)

    valid = True
    entry: AndroidSdk | None = None
    found = False
    for child in element:
        if child.tag != "android-sdk":
            diag.error(f"Unexpected element in android-sdk-group: {child.tag}")
            valid = False
            continue
        if found:
            diag.error(f"Multiple android-sdk entries in group {label}. Keeping the first.")
            valid = False
            continue
        found = True
        entry = _parse_android_sdk(child, diag)
        if entry is None:
            valid = False

    if not found:
        diag.error(f"No android-sdk entry in group {label}")
        return False
    if entry is not None:
        config.android_sdk_groups[label] = entry
    return valid


def gl_texture_group_handler(
    config: PostProcessingConfiguration, element: ET.Element, diag: Diagnostics
) -> bool:
    label = get_label(element, diag)
    if not label or not _claim_label(config.gl_texture_groups, label, element, diag):
        return False
    note_unknown_attributes(element, ("label",), diag)

    group = config.gl_texture_groups.setdefault(label, [])
    valid = True
    for child in element:
        if child.tag != "gl-texture":
            diag.error(f"Unexpected element in GL texture group: {child.tag}")
            valid = False
            continue
        note_unknown_attributes(child, ("name",), diag)
        name = child.get("name", "")
        if not name:
            diag.error(f"No name found for gl-texture in group {label}")
            valid = False

        paths: list[str] = []
        for path_element in child:
            if path_element.tag != "texture-path":
                diag.error(f"Unexpected element in gl-texture element: {path_element.tag}")
                valid = False
                continue
            paths.append(element_text(path_element))
        if not paths:
            diag.error(f"No texture-path found for gl-texture {name} in group {label}")
            valid = False

        if name and paths:
            group.append(GlTexture(name=name, texture_paths=tuple(paths)))
    return valid


def device_feature_group_handler(
    config: PostProcessingConfiguration, element: ET.Element, diag: Diagnostics
) -> bool:
    label = get_label(element, diag)
    if not label or not _claim_label(config.device_feature_groups, label, element, diag):
        return False
    note_unknown_attributes(element, ("label",), diag)

    group = config.device_feature_groups.setdefault(label, [])
    valid = True
    for child in element:
        if child.tag != "supports-feature":
            diag.error(f"Unexpected element in device feature group: {child.tag}")
            valid = False
            continue
        text = element_text(child)
        if not text:
            diag.error(f"Empty supports-feature in group {label}")
            valid = False
            continue
        group.append(text)
    return valid


TAG_HANDLERS: dict[tuple[str, str], TagHandler] = {
    (ARTIFACTS_ELEMENT, "artifact"): artifact_handler,
    (ARTIFACTS_ELEMENT, "artifact-format"): artifact_format_handler,
    (GROUPS_ELEMENT, "abi-group"): abi_group_handler,
    (GROUPS_ELEMENT, "screen-density-group"): screen_density_group_handler,
    (GROUPS_ELEMENT, "locale-group"): locale_group_handler,
    (GROUPS_ELEMENT, "android-sdk-group"): android_sdk_group_handler,
    (GROUPS_ELEMENT, "gl-texture-group"): gl_texture_group_handler,
    (GROUPS_ELEMENT, "device-feature-group"): device_feature_group_handler,
}
"""Static (parent, element) -> handler dispatch table.

Elements under artifacts/groups with no entry here are ignored with a note."""


def execute_handlers(
    config: PostProcessingConfiguration, root: ET.Element, diag: Diagnostics
) -> bool:
    """Run the handler for every element under the artifacts and groups branches.

    A failing handler does not stop the walk; every element is visited so
    that all problems are reported in one pass.

    Returns:
        True only if every handler succeeded.
    """
    valid = True
    for branch in root:
        if branch.tag not in (ARTIFACTS_ELEMENT, GROUPS_ELEMENT):
            diag.note(f"Ignoring unknown element in {root.tag}: {branch.tag}")
            continue
        for element in branch:
            handler = TAG_HANDLERS.get((branch.tag, element.tag))
            if handler is None:
                diag.note(f"Ignoring unknown element in {branch.tag}: {element.tag}")
                continue
            if not handler(config, element, diag):
                valid = False
    return valid


# ===--- Resolver ---=== #

T = TypeVar("T")


def _split_namespace(name: str) -> tuple[str, str]:
    if name.startswith("{"):
        uri, _, local = name[1:].partition("}")
        return uri, local
    return "", name


def strip_namespaces(root: ET.Element) -> None:
    """Remove namespace URIs from every element and attribute name in place."""
    for element in root.iter():
        element.tag = _split_namespace(element.tag)[1]
        if any(name.startswith("{") for name in element.attrib):
            element.attrib = {
                _split_namespace(name)[1]: value
                for name, value in element.attrib.items()
            }


def extract_configuration(
    contents: str, diag: Diagnostics
) -> PostProcessingConfiguration | None:
    """Parse a post-process document into groups and artifact declarations.

    Structural problems (malformed XML, a foreign root namespace, an
    unexpected root element) report a single error. Schema problems are
    reported per element and the whole document is rejected after every
    element has been processed.

    Args:
        contents: Raw XML text.
        diag: Sink for all messages.

    Returns:
        The populated configuration, or None on any error.
    """
    try:
        root = ET.fromstring(contents)
    except ET.ParseError as err:
        diag.error(f"Could not parse configuration XML: {err}")
        return None

    xml_ns, root_name = _split_namespace(root.tag)
    if xml_ns:
        if xml_ns != AAPT_XML_NS:
            diag.error(f"Unknown namespace found on root element: {xml_ns}")
            return None
        strip_namespaces(root)

    if root_name != ROOT_ELEMENT:
        diag.error(f"Expected root element {ROOT_ELEMENT}, found: {root_name}")
        return None

    config = PostProcessingConfiguration()
    if not execute_handlers(config, root, diag):
        diag.error("Could not process XML document")
        return None
    return config


def copy_group_references(label: str | None, groups: dict[str, list[T]]) -> list[T] | None:
    """Copy the values of a referenced group.

    Returns an empty list when no group is referenced and None when the label
    does not exist.
    """
    if label is None:
        return []
    group = groups.get(label)
    if group is None:
        return None
    return list(group)


def to_output_artifact(
    artifact: ConfiguredArtifact,
    apk_name: str,
    config: PostProcessingConfiguration,
    diag: Diagnostics,
) -> OutputArtifact | None:
    """Resolve one artifact declaration against the parsed groups.

    Every group reference is checked before giving up, so all missing labels
    of one artifact are reported together.

    Args:
        artifact: Declaration to resolve.
        apk_name: Input APK file name used for ${basename} and ${ext}.
        config: Parsed configuration holding the groups and global format.
        diag: Sink for errors; lookup errors are scoped to the artifact name.

    Returns:
        The resolved OutputArtifact, or None on any error.
    """
    if artifact.name is None and config.artifact_format is None:
        diag.error("Artifact does not have a name and no global name template defined")
        return None

    if artifact.name is not None:
        artifact_name = artifact.name_for(apk_name, diag)
    else:
        artifact_name = artifact.to_artifact_name(config.artifact_format, apk_name, diag)

    if artifact_name is None:
        diag.error("Could not determine split APK artifact name")
        return None

    src_diag = SourcePathDiagnostics(artifact_name, diag)

    abis = copy_group_references(artifact.abi_group, config.abi_groups)
    if abis is None:
        src_diag.error(f"Could not lookup required ABIs: {artifact.abi_group}")

    locales = copy_group_references(artifact.locale_group, config.locale_groups)
    if locales is None:
        src_diag.error(f"Could not lookup required locales: {artifact.locale_group}")

    densities = copy_group_references(
        artifact.screen_density_group, config.screen_density_groups
    )
    if densities is None:
        src_diag.error(
            f"Could not lookup required screen densities: {artifact.screen_density_group}"
        )

    features = copy_group_references(
        artifact.device_feature_group, config.device_feature_groups
    )
    if features is None:
        src_diag.error(
            f"Could not lookup required device features: {artifact.device_feature_group}"
        )

    textures = copy_group_references(artifact.gl_texture_group, config.gl_texture_groups)
    if textures is None:
        src_diag.error(
            f"Could not lookup required OpenGL texture formats: {artifact.gl_texture_group}"
        )

    android_sdk: AndroidSdk | None = None
    if artifact.android_sdk_group is not None:
        android_sdk = config.android_sdk_groups.get(artifact.android_sdk_group)
        if android_sdk is None:
            src_diag.error(
                f"Could not lookup required Android SDK version: {artifact.android_sdk_group}"
            )

    if src_diag.error_found:
        return None
    return OutputArtifact(
        name=artifact_name,
        version=artifact.version,
        abis=tuple(abis),
        screen_densities=tuple(densities),
        locales=tuple(locales),
        android_sdk=android_sdk,
        features=tuple(features),
        textures=tuple(textures),
    )


def find_duplicate_versions(artifacts: list[ConfiguredArtifact]) -> list[int]:
    ordered = sorted(artifacts, key=lambda artifact: artifact.version)
    duplicates: list[int] = []
    for previous, current in zip(ordered, ordered[1:]):
        if previous.version == current.version and current.version not in duplicates:
            duplicates.append(current.version)
    return duplicates


class ConfigurationParser:
    """Resolves split artifacts from one post-process document.

    The diagnostics sink defaults to a fresh NoopDiagnostics per parser.
    """

    def __init__(self, contents: str, diag: Diagnostics | None = None):
        self._contents = contents
        self._diag: Diagnostics = diag if diag is not None else NoopDiagnostics()

    @classmethod
    def for_path(
        cls, path: Path | str, diag: Diagnostics | None = None
    ) -> "ConfigurationParser":
        """Read a configuration file; OSError propagates to the caller."""
        return cls(Path(path).read_text(encoding="utf-8"), diag)

    @property
    def diagnostics(self) -> Diagnostics:
        return self._diag

    def with_diagnostics(self, diag: Diagnostics) -> "ConfigurationParser":
        self._diag = diag
        return self

    def parse(self, apk_path: str | Path) -> list[OutputArtifact] | None:
        """Expand every artifact declaration for the given input APK.

        Resolution is all-or-nothing: every artifact is attempted so that all
        errors are reported, but if any of them fails no artifact is returned.

        Args:
            apk_path: Path or file name of the input APK. Only the file name
                is used.

        Returns:
            Output artifacts in declaration order, or None on any error.
        """
        config = extract_configuration(self._contents, self._diag)
        if config is None:
            return None

        # TODO: Arrange artifacts to match Play Store multi-APK version ordering
        # rules; for now versions only have to be unique.
        duplicates = find_duplicate_versions(config.artifacts)
        if duplicates:
            joined = ", ".join(str(version) for version in duplicates)
            self._diag.error(f"Configuration has duplicate versions: {joined}")
            return None

        apk_name = Path(apk_path).name
        output_artifacts: list[OutputArtifact] = []
        has_errors = False
        for artifact in config.artifacts:
            output_artifact = to_output_artifact(artifact, apk_name, config, self._diag)
            if output_artifact is None:
                # Keep going so that every error is reported.
                has_errors = True
            else:
                output_artifacts.append(output_artifact)

        if has_errors:
            return None
        return output_artifacts


# ===--- Formatters ---=== #


def describe_android_sdk(sdk: AndroidSdk) -> str:
    """Render an SDK range as "min-max", using "*" for an open bound."""
    low = "*" if sdk.min_sdk_version is None else str(sdk.min_sdk_version)
    high = "*" if sdk.max_sdk_version is None else str(sdk.max_sdk_version)
    text = f"{low}-{high}"
    if sdk.target_sdk_version is not None:
        text += f" (target {sdk.target_sdk_version})"
    return text


def format_artifacts_table(artifacts: list[OutputArtifact], apk_name: str) -> str:
    """Return the resolved artifact listing printed by the CLI.

    Output format:

        2 split artifacts for app.apk:

          v1  app.arm.apk   abi: armeabi-v7a, arm64-v8a
          v2  app.x86.apk   abi: x86  sdk: 19-* (target 24)

    Axes the artifact does not reference are omitted from its row.

    Args:
        artifacts: Resolved artifacts in declaration order.
        apk_name: Input APK file name shown in the heading.

    Returns:
        Formatted multi-line string including trailing newline.
    """
    lines = [f"{len(artifacts)} split artifacts for {apk_name}:", ""]

    if not artifacts:
        lines.append("")
        return "\n".join(lines)

    name_width = max(len(a.name) for a in artifacts)
    version_width = max(len(f"v{a.version}") for a in artifacts)

    for a in artifacts:
        columns: list[str] = []
        if a.abis:
            columns.append("abi: " + ", ".join(abi_to_string(abi) for abi in a.abis))
        if a.screen_densities:
            columns.append("density: " + ", ".join(str(d) for d in a.screen_densities))
        if a.locales:
            columns.append("locale: " + ", ".join(str(loc) for loc in a.locales))
        if a.android_sdk is not None:
            columns.append("sdk: " + describe_android_sdk(a.android_sdk))
        if a.textures:
            columns.append("gl: " + ", ".join(t.name for t in a.textures))
        if a.features:
            columns.append("feature: " + ", ".join(a.features))

        row = f"  {f'v{a.version}':<{version_width}}  {a.name.ljust(name_width)}"
        if columns:
            row += "  " + "  ".join(columns)
        lines.append(row.rstrip())

    lines.append("")
    return "\n".join(lines)


# ===--- Main ---=== #


def main(argv: list[str] | None = None) -> None:
    try:
        config = build_config(argv)
    except ConfigError as err:
        print(f"Config error [{err.code}]: {err.message}")
        if err.suggestion:
            print(f"Hint: {err.suggestion}")
        raise SystemExit(1) from err

    diag = PrintDiagnostics(verbose=config.verbose)
    try:
        parser = ConfigurationParser.for_path(config.config_path, diag)
    except (OSError, UnicodeDecodeError) as err:
        print(f"Error: {err}")
        raise SystemExit(1) from err

    artifacts = parser.parse(config.apk_name)
    if artifacts is None:
        print(f"Error: could not resolve split artifacts from {config.config_path}")
        raise SystemExit(1)

    print(format_artifacts_table(artifacts, config.apk_name), end="")


if __name__ == "__main__":
    main()
