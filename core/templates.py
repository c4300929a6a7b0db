# core/templates.py
from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

DEFAULT_TEMPLATE_ID = "template-1"


class Template(BaseModel):
    id: str
    name: str
    description: str = ""
    preview_image: str = ""
    category: Optional[str] = None
    features: List[str] = Field(default_factory=list)


class TemplateRegistry:
    """Templates a portfolio may be published with. Passed to whoever needs it."""

    def __init__(self, templates: Optional[List[Template]] = None):
        self._templates: Dict[str, Template] = {}
        for t in templates or []:
            self.register(t)

    def register(self, template: Template) -> None:
        self._templates[template.id] = template

    def get(self, template_id: str) -> Optional[Template]:
        return self._templates.get(template_id)

    def has(self, template_id: str) -> bool:
        return template_id in self._templates

    def all(self) -> List[Template]:
        return list(self._templates.values())


def default_registry() -> TemplateRegistry:
    return TemplateRegistry([
        Template(
            id=DEFAULT_TEMPLATE_ID,
            name="Modern Portfolio",
            description="A clean and modern portfolio template",
            preview_image="/assets/templates/template-1-preview.png",
            category="modern",
            features=["Hero section", "Skills display", "Projects grid", "Experience timeline"],
        ),
    ])
