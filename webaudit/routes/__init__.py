# Routes package init
"""
Web Audit API — Routes Package
================================

Route Inventory:
    - health.py:    GET  /health
    - alerts.py:    /api/alerts, /api/admin/alerts (+ /stats)
    - plans.py:     /api/plans, /api/razorpay-plans, /api/credit-packages
    - payments.py:  create-order, create-subscription, razorpay-webhook,
                    payment-success, purchase-credits,
                    credit-purchase-success, payment-history
    - access.py:    check-feature-access, validate-crawl,
                    check-plan-expiry, cron/check-expired-plans
    - analysis.py:  gemini-analysis (+ -stream), image-analysis
    - audit.py:     pagespeed, check-link, scrape, scraped-images
    - email.py:     send-email, notify-me
    - admin.py:     /api/admin reporting

Routes stay thin: they read the request, call one service method and shape
the response. Business rules live in services.
"""
