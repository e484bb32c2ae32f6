"""Image vectors: which container image to use for which Kubernetes version."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, fields, replace
from typing import Iterator, Mapping

import yaml

from .constants import IMAGE_NAMES

OVERRIDE_ENV = "IMAGEVECTOR_OVERWRITE"

_YAML_FIELDS = {
    "name": "name",
    "sourceRepository": "source_repository",
    "repository": "repository",
    "tag": "tag",
    "ref": "ref",
    "runtimeVersion": "runtime_version",
    "targetVersion": "target_version",
}

_VERSION = re.compile(r"v?(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:[-+][0-9A-Za-z.+-]*)?")
_TERM = re.compile(
    r"\s*(>=|<=|!=|==|=>|=<|=|>|<|~>|~|\^)?\s*v?(\d+|[xX*])(?:\.(\d+|[xX*]))?"
    r"(?:\.(\d+|[xX*]))?(?:-[0-9A-Za-z.-]+)?(?:\+[0-9A-Za-z.-]+)?\s*"
)


class ImageNotFoundError(LookupError):
    """No image in the vector matches the requested name and versions."""


@dataclass(frozen=True)
class ImageSource:
    """One entry of an image vector."""

    name: str
    repository: str | None = None
    tag: str | None = None
    ref: str | None = None
    source_repository: str | None = None
    runtime_version: str | None = None
    target_version: str | None = None


def _image_string(source: ImageSource) -> str:
    if source.ref:
        return source.ref
    if source.tag is None:
        return source.repository or ""
    delimiter = "@" if source.tag.startswith("sha256:") else ":"
    return f"{source.repository}{delimiter}{source.tag}"


def _source_from_mapping(entry: object) -> ImageSource:
    if not isinstance(entry, dict):
        raise ValueError("image entry must be a mapping")
    values = {
        attr: str(entry[key]) for key, attr in _YAML_FIELDS.items() if entry.get(key) is not None
    }
    if not values.get("name"):
        raise ValueError("image entry has no name")
    if not values.get("repository") and not values.get("ref"):
        raise ValueError(f"image {values['name']!r} has neither repository nor ref")
    return ImageSource(**values)


def _parse_version(text: str) -> tuple[int, int, int]:
    match = _VERSION.fullmatch(text.strip())
    if match is None:
        raise ValueError(f"invalid version {text!r}")
    major, minor, patch = (int(group) if group else 0 for group in match.groups())
    return major, minor, patch


def _parse_terms(alternative: str) -> list[tuple[str, tuple[int | None, ...]]]:
    text = alternative.strip()
    terms = []
    pos = 0
    while pos < len(text):
        match = _TERM.match(text, pos)
        if match is None or match.end() == pos:
            raise ValueError(f"invalid version constraint {alternative!r}")
        parts = tuple(
            int(group) if group is not None and group.isdigit() else None
            for group in match.group(2, 3, 4)
        )
        terms.append((match.group(1) or "=", parts))
        pos = match.end()
        if pos < len(text) and text[pos] == ",":
            pos += 1
    if not terms:
        raise ValueError(f"invalid version constraint {alternative!r}")
    return terms


def _bump(parts: tuple[int | None, ...]) -> tuple[int, int, int] | None:
    specified = [part for part in parts if part is not None]
    if not specified:
        return None
    specified[-1] += 1
    padded = specified + [0] * (3 - len(specified))
    return padded[0], padded[1], padded[2]


def _wild_equal(parts: tuple[int | None, ...], version: tuple[int, int, int]) -> bool:
    return all(part is None or part == actual for part, actual in zip(parts, version))


def _check_term(op: str, parts: tuple[int | None, ...], version: tuple[int, int, int]) -> bool:
    bound = tuple(part or 0 for part in parts)
    if op in ("=", "=="):
        return _wild_equal(parts, version)
    if op == "!=":
        return not _wild_equal(parts, version)
    if op in (">=", "=>"):
        return version >= bound
    if op == "<":
        return version < bound
    if op == ">":
        if None in parts:
            upper = _bump(parts)
            return upper is None or version >= upper
        return version > bound
    if op in ("<=", "=<"):
        if None in parts:
            upper = _bump(parts)
            return upper is None or version < upper
        return version <= bound
    major, minor, patch = parts
    if major is None:
        return True
    if op in ("~", "~>"):
        upper = (major + 1, 0, 0) if minor is None else (major, minor + 1, 0)
    elif major != 0 or minor is None:
        upper = (major + 1, 0, 0)
    elif minor != 0 or patch is None:
        upper = (0, minor + 1, 0)
    else:
        upper = (0, 0, patch + 1)
    return bound <= version < upper


def _satisfies(constraint: str, version_text: str) -> bool:
    alternatives = [_parse_terms(alternative) for alternative in constraint.split("||")]
    try:
        version = _parse_version(version_text)
    except ValueError:
        return False
    return any(all(_check_term(op, parts, version) for op, parts in terms) for terms in alternatives)


def _match_score(source: ImageSource, runtime_version: str | None, target_version: str | None) -> int | None:
    score = 0
    for constraint, version in (
        (source.runtime_version, runtime_version),
        (source.target_version, target_version),
    ):
        if constraint is None:
            continue
        if version is None or not _satisfies(constraint, version):
            return None
        score += 1
    return score


def _key(source: ImageSource) -> tuple[str, str | None, str | None]:
    return source.name, source.runtime_version, source.target_version


@dataclass(frozen=True)
class ImageVector:
    """An ordered collection of image sources."""

    sources: tuple[ImageSource, ...] = ()

    def __iter__(self) -> Iterator[ImageSource]:
        return iter(self.sources)

    def __len__(self) -> int:
        return len(self.sources)

    @classmethod
    def from_yaml(cls, text: str | bytes) -> ImageVector:
        """Parse an image vector document with a top-level ``images`` list."""
        try:
            document = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ValueError(f"could not parse image vector: {exc}") from exc
        if document is None:
            return cls()
        if not isinstance(document, dict):
            raise ValueError("image vector must be a mapping")
        images = document.get("images") or []
        if not isinstance(images, list):
            raise ValueError("images must be a list")
        return cls(tuple(_source_from_mapping(entry) for entry in images))

    def with_env_override(self, environ: Mapping[str, str] | None = None) -> ImageVector:
        """Merge the vector named by the override environment variable, if set."""
        environ = os.environ if environ is None else environ
        path = environ.get(OVERRIDE_ENV)
        if not path:
            return self
        with open(path, encoding="utf-8") as handle:
            overrides = ImageVector.from_yaml(handle.read())
        merged = list(self.sources)
        for override in overrides:
            position = next(
                (index for index, source in enumerate(merged) if _key(source) == _key(override)),
                None,
            )
            if position is None:
                merged.append(override)
            else:
                changes = {
                    f.name: getattr(override, f.name)
                    for f in fields(override)
                    if getattr(override, f.name) is not None
                }
                merged[position] = replace(merged[position], **changes)
        return ImageVector(tuple(merged))

    def find_image(self, name: str, runtime_version: str | None, target_version: str | None) -> str:
        """Return the image reference best matching the name and versions."""
        best: ImageSource | None = None
        best_score = -1
        for source in self.sources:
            if source.name != name:
                continue
            score = _match_score(source, runtime_version, target_version)
            if score is not None and score > best_score:
                best, best_score = source, score
        if best is None:
            raise ImageNotFoundError(
                f"could not find image {name!r} (runtime version {runtime_version!r}, "
                f"target version {target_version!r})"
            )
        return _image_string(best)

    def calico_images(self, kubernetes_version: str) -> dict[str, str]:
        """Return all calico images keyed by image name."""
        return {
            name: self.find_image(name, kubernetes_version, kubernetes_version) for name in IMAGE_NAMES
        }