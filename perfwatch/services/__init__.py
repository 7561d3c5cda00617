"""Service layer: metric store, reports, alerts, dashboard and retention."""
