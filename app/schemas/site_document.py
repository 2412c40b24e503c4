from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class _Section(BaseModel):
    # Generated content routinely carries fields the editor adds later; keep them.
    model_config = ConfigDict(extra="allow")


class HeroSection(_Section):
    title: Optional[str] = None
    subtitle: Optional[str] = None
    description: Optional[str] = None
    ctaText: Optional[str] = None
    ctaLink: Optional[str] = None


class AboutValue(_Section):
    title: Optional[str] = None
    description: Optional[str] = None


class AboutSection(_Section):
    title: Optional[str] = None
    subtitle: Optional[str] = None
    description: Optional[str] = None
    values: list[AboutValue] = Field(default_factory=list)


class ServiceItem(_Section):
    title: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    features: list[str] = Field(default_factory=list)
    price: Optional[str] = None


class Testimonial(_Section):
    text: str
    name: Optional[str] = None
    position: Optional[str] = None
    rating: Optional[int] = Field(default=None, ge=1, le=5)


class FaqItem(_Section):
    question: str
    answer: str


class SeoSection(_Section):
    title: Optional[str] = None
    description: Optional[str] = None
    keywords: list[str] = Field(default_factory=list)


class ContactSection(_Section):
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    hours: Optional[str] = None


class BlogArticle(_Section):
    title: str
    excerpt: Optional[str] = None
    content: Optional[str] = None
    category: Optional[str] = None
    tags: list[str] = Field(default_factory=list)


class BlogSection(_Section):
    articles: list[BlogArticle] = Field(default_factory=list)


# Sections stored as one JSON object.
OBJECT_SECTION_MODELS: dict[str, type[BaseModel]] = {
    "hero": HeroSection,
    "about": AboutSection,
    "seo": SeoSection,
    "contact": ContactSection,
}

# Sections stored as a JSON array of items.
LIST_SECTION_MODELS: dict[str, type[BaseModel]] = {
    "services": ServiceItem,
    "testimonials": Testimonial,
    "faq": FaqItem,
}

DOCUMENT_SECTIONS: tuple[str, ...] = (
    "hero",
    "about",
    "services",
    "testimonials",
    "faq",
    "blog",
    "seo",
    "contact",
    "images",
)
