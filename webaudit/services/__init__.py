# Services package init
"""
Web Audit API — Services Layer
================================

Service Inventory:
    - ContentAnalyzer (abstract) / GeminiService: AI content and image analysis
    - AnalysisService: cache → Gemini → persist orchestration, SSE streaming
    - ImageService: image download, validation and scratch storage
    - PageSpeedService: Lighthouse reports with retry
    - PaymentGateway: Razorpay SDK wrapper; PaymentService: orders, plan
      purchases, credits, history
    - PlanService / CreditPackageService: pricing catalogue
    - FeatureAccessService: plan gating; PlanExpiryService: downgrades
    - AlertService, AdminService: banners and admin dashboards
    - LinkChecker, ScraperClient: outbound HTTP probes and the crawl proxy
    - EmailService, NotifyService: SMTP delivery and launch sign-ups

Each module exposes a singleton; collaborators are constructor arguments
so tests can swap them.
"""
