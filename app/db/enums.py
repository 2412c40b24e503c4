from enum import Enum


class RequestTypeEnum(str, Enum):
    content = "content"
    images = "images"
    services = "services"
    hero = "hero"
    about = "about"
    testimonials = "testimonials"
    faq = "faq"
    seo = "seo"
    blog = "blog"
    contact = "contact"
    custom = "custom"


class RequestStatusEnum(str, Enum):
    pending = "pending"
    assigned = "assigned"
    processing = "processing"
    completed = "completed"
    rejected = "rejected"
    cancelled = "cancelled"
    failed = "failed"


class RequestPriorityEnum(str, Enum):
    low = "low"
    normal = "normal"
    high = "high"
    urgent = "urgent"


class RequestChangeTypeEnum(str, Enum):
    status_change = "status_change"
    assignment_change = "assignment_change"
    priority_change = "priority_change"
    content_update = "content_update"
    notes_update = "notes_update"
    cost_update = "cost_update"
    merge_applied = "merge_applied"
    merge_failed = "merge_failed"
