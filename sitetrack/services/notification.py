"""
Notification Service.

In-app notifications for acceptance and defect events. Rows are added to the
caller's transaction and flushed; the route handler commits. Callers wrap
these methods in ``run_best_effort`` so a failing notification never blocks
the event that produced it.
"""

from sitetrack.models import db
from sitetrack.models.notification import Notification


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def notify(*, title, message="", category="system", severity="info",
               project_id=None, entity_type="", entity_id=None, recipients=None):
        """
        Add one notification per recipient (or a single 'all' broadcast).

        Returns:
            List of flushed Notification instances.
        """
        targets = recipients or ["all"]
        notifications = []
        for r in targets:
            notif = Notification(
                project_id=project_id,
                recipient=r,
                title=title,
                message=message,
                category=category,
                severity=severity,
                entity_type=entity_type,
                entity_id=entity_id,
            )
            db.session.add(notif)
            notifications.append(notif)
        db.session.flush()
        return notifications

    # ── Domain events ─────────────────────────────────────────────────────

    @staticmethod
    def stage_created(stage):
        return NotificationService.notify(
            title=f"Acceptance stage created: {stage.name}",
            message="Auto-created on phase completion" if stage.is_auto_created else "",
            category="acceptance",
            project_id=stage.project_id,
            entity_type="acceptance_stage",
            entity_id=stage.id,
            recipients=["supervisor", "project_manager"],
        )

    @staticmethod
    def stage_status_changed(stage, old_status, new_status):
        severity = "warning" if new_status == "rejected" else "success" if stage.is_fully_approved else "info"
        return NotificationService.notify(
            title=f"Acceptance stage '{stage.name}': {old_status} → {new_status}",
            message=(stage.rejection_reason or "") if new_status == "rejected" else "",
            category="acceptance",
            severity=severity,
            project_id=stage.project_id,
            entity_type="acceptance_stage",
            entity_id=stage.id,
        )

    @staticmethod
    def defect_created(defect):
        return NotificationService.notify(
            title=f"Defect #{defect.id} opened [{defect.severity}]",
            message=defect.description,
            category="defect",
            severity="error" if defect.severity in ("high", "critical") else "warning",
            project_id=defect.project_id,
            entity_type="defect",
            entity_id=defect.id,
            recipients=["project_manager", "subcontractor"],
        )

    @staticmethod
    def defect_status_changed(defect, old_status, new_status):
        return NotificationService.notify(
            title=f"Defect #{defect.id}: {old_status} → {new_status}",
            category="defect",
            severity="success" if new_status == "verified" else "info",
            project_id=defect.project_id,
            entity_type="defect",
            entity_id=defect.id,
        )

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_project(project_id, recipient=None, unread_only=False, limit=50, offset=0):
        """Notifications for a project, newest first. Returns (items, total)."""
        q = Notification.query.filter_by(project_id=project_id)
        if recipient:
            q = q.filter(
                (Notification.recipient == recipient) | (Notification.recipient == "all")
            )
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = q.order_by(Notification.id.desc()).offset(offset).limit(limit).all()
        return items, total

    @staticmethod
    def mark_read(notification_id):
        """Mark a single notification as read."""
        notif = db.session.get(Notification, notification_id)
        if notif:
            notif.mark_read()
            db.session.flush()
        return notif
