"""Maps rendered UI elements to the source lines that declare them."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pixelmend.core.models import BoundingBox, CodeReference, ElementAttributes, UIElement
from pixelmend.index.source_index import KIND_CLASS, KIND_DATA_TEST, KIND_ID, SourceIndex

logger = logging.getLogger(__name__)

BASE_REFERENCE_CONFIDENCE = 0.5


def load_elements(path: Path) -> dict[str, list[dict[str, Any]]]:
    """Read element probe output.

    Accepted shapes: a list of element records (surface name taken from the
    file stem), ``{"elements": [...]}`` or ``{"<surface>": [...], ...}``.
    """
    path = Path(path)
    data = json.loads(path.read_text())
    if isinstance(data, list):
        return {path.stem: data}
    if isinstance(data, dict) and isinstance(data.get("elements"), list):
        return {str(data.get("name") or path.stem): data["elements"]}
    if isinstance(data, dict):
        return {str(k): v for k, v in data.items() if isinstance(v, list)}
    raise ValueError(f"Unrecognised element file: {path}")


def load_element_dir(directory: Path) -> dict[str, list[dict[str, Any]]]:
    """Load every ``*.json`` file in *directory*, one surface per file."""
    records: dict[str, list[dict[str, Any]]] = {}
    for file in sorted(Path(directory).glob("*.json")):
        try:
            records.update(load_elements(file))
        except (OSError, ValueError) as e:
            logger.warning("Skipping element file %s: %s", file, e)
    return records


def elements_in_box(elements: list[UIElement], box: BoundingBox) -> list[UIElement]:
    """Elements whose bounding box intersects *box*."""
    return [
        el for el in elements
        if el.bounding_box is not None and el.bounding_box.intersection_area(box) > 0
    ]


class UICodeMapper:
    """Turns element probe records into :class:`UIElement` objects with code references."""

    def __init__(self, index: SourceIndex):
        self.index = index

    def map_elements(self, raw: list[dict[str, Any]]) -> list[UIElement]:
        elements = []
        for record in raw:
            element = self.map_element(record)
            if element is not None:
                elements.append(element)
        return elements

    def map_element(self, record: dict[str, Any]) -> UIElement | None:
        box_data = record.get("boundingBox") or record.get("bounding_box")
        box = BoundingBox.from_dict(box_data) if isinstance(box_data, dict) else None

        class_name = record.get("className") or ""
        if not isinstance(class_name, str):
            # SVG elements report an SVGAnimatedString-like object.
            class_name = str(class_name.get("baseVal", "")) if isinstance(class_name, dict) else ""

        attrs = ElementAttributes(
            tag=str(record.get("tagName") or "").lower(),
            id=str(record.get("id") or ""),
            classes=tuple(class_name.split()),
            text=str(record.get("text") or record.get("textContent") or "")[:200],
            data_test=str(record.get("dataTest") or record.get("data_test") or ""),
        )
        selector = str(record.get("selector") or self._selector_for(attrs))
        if not selector:
            return None

        element = UIElement(selector=selector, attributes=attrs, bounding_box=box)
        for ref in self.references_for(attrs):
            element.add_code_reference(ref)
        return element

    def references_for(self, attrs: ElementAttributes) -> list[CodeReference]:
        lookups: list[tuple[str, str, list]] = []
        if attrs.id:
            lookups.append((KIND_ID, attrs.id, self.index.find_by_id(attrs.id)))
        for cls in attrs.classes:
            lookups.append((KIND_CLASS, cls, self.index.find_by_class(cls)))
        if attrs.data_test:
            lookups.append(
                (KIND_DATA_TEST, attrs.data_test, self.index.find_by_data_test(attrs.data_test))
            )

        refs: list[CodeReference] = []
        seen: set[str] = set()
        for kind, value, components in lookups:
            for component in components:
                for decl in component.declarations_for(kind, value):
                    ref = CodeReference(
                        file_path=component.path,
                        line_number=decl.line,
                        context_snippet=component.line(decl.line).strip(),
                        confidence=BASE_REFERENCE_CONFIDENCE,
                    )
                    if ref.location not in seen:
                        seen.add(ref.location)
                        refs.append(ref)
        return refs

    @staticmethod
    def _selector_for(attrs: ElementAttributes) -> str:
        if attrs.id:
            return f"#{attrs.id}"
        if attrs.classes:
            return f"{attrs.tag}." + ".".join(attrs.classes)
        return attrs.tag
