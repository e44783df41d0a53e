"""
Web Audit API — Feature Catalogue
===================================

What:  Every gateable audit feature, keyed by the id stored in
       `plans.can_use_features`.
Why:   Plan checks compare ids; user-facing denial messages use the names.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass(frozen=True)
class Feature:
    id: str
    name: str
    description: str
    category: str
    is_core: bool


FEATURE_CATEGORIES: Dict[str, str] = {
    "crawling": "Website Crawling",
    "content": "Content & Brand Insights",
    "security": "Security & Compliance",
    "media": "Media & Asset Analysis",
    "technical": "Technical & Performance",
}

FEATURES: List[Feature] = [
    # ── Website Crawling ──────────────────────────────────────────────────
    Feature("single_page_crawl", "Single Page Crawl", "Analyze one specific page", "crawling", True),
    Feature("full_site_crawl", "Full Site Crawl", "Scan and audit all accessible pages", "crawling", False),
    Feature("hidden_urls_detection", "Hidden URLs Detection", "Identify unlinked or orphan pages", "crawling", False),
    # ── Content & Brand Insights ──────────────────────────────────────────
    Feature(
        "brand_consistency_check",
        "Brand Consistency Check",
        "Ensure colors, fonts, and messaging align with brand guidelines",
        "content",
        False,
    ),
    Feature(
        "grammar_content_analysis",
        "Grammar & Content Analysis",
        "Check for spelling, grammar, readability, and tone",
        "content",
        True,
    ),
    Feature(
        "seo_structure",
        "SEO & Structure",
        "Validate meta tags, heading hierarchy, schema markup, and keyword usage",
        "content",
        False,
    ),
    # ── Security & Compliance ─────────────────────────────────────────────
    Feature("stripe_key_detection", "Stripe Public Key Detection", "Identify exposed API keys", "security", False),
    Feature(
        "google_tags_audit",
        "Google Tags & Tracking Audit",
        "Detect Google Analytics, Tag Manager, and third-party scripts",
        "security",
        False,
    ),
    # ── Media & Asset Analysis ────────────────────────────────────────────
    Feature(
        "image_scan",
        "On-Site Image Scan",
        "Check alt tags, resolution, compression, and broken images",
        "media",
        True,
    ),
    Feature(
        "link_scanner",
        "Link Scanner",
        "Validate internal/external links and detect broken redirects",
        "media",
        True,
    ),
    Feature(
        "social_share_preview",
        "Social Share Preview",
        "Generate how the site appears on platforms like Twitter, LinkedIn, and Facebook",
        "media",
        False,
    ),
    # ── Technical & Performance ───────────────────────────────────────────
    Feature(
        "performance_metrics",
        "Performance Metrics",
        "Page load time, Core Web Vitals, resource optimization",
        "technical",
        True,
    ),
    Feature(
        "ui_ux_quality_check",
        "UI/UX Quality Check",
        "Detect layout issues, responsiveness, and accessibility gaps",
        "technical",
        False,
    ),
    Feature(
        "technical_fix_recommendations",
        "Technical Fix Recommendations",
        "Actionable suggestions for speed, accessibility, and SEO",
        "technical",
        False,
    ),
    Feature(
        "technical_analysis",
        "Technical Analysis",
        "Comprehensive technical audit including code quality, structure, and best practices",
        "technical",
        False,
    ),
    Feature(
        "accessibility_audit",
        "Accessibility Audit",
        "Comprehensive accessibility compliance checking",
        "technical",
        False,
    ),
    Feature(
        "mobile_responsiveness",
        "Mobile Responsiveness",
        "Test and validate mobile-friendly design",
        "technical",
        False,
    ),
    Feature(
        "page_speed_analysis",
        "Page Speed Analysis",
        "Detailed page loading performance analysis",
        "technical",
        True,
    ),
    Feature(
        "broken_links_check",
        "Broken Links Check",
        "Find and report broken internal and external links",
        "media",
        True,
    ),
]

_BY_ID: Dict[str, Feature] = {feature.id: feature for feature in FEATURES}


def get_feature(feature_id: str) -> Optional[Feature]:
    return _BY_ID.get(feature_id)


def features_by_category(category: str) -> List[Feature]:
    return [f for f in FEATURES if f.category == category]


def core_features() -> List[Feature]:
    return [f for f in FEATURES if f.is_core]


def validate_feature_ids(feature_ids: List[str]) -> bool:
    return all(fid in _BY_ID for fid in feature_ids)
