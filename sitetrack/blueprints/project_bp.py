"""
Project Blueprint — projects, subcontractors, reconciled progress.

Endpoints:
  Project:        GET/POST /projects, GET /projects/<id>
  Subcontractor:  GET/POST /projects/<id>/subcontractors, PUT /subcontractors/<id>
  Progress:       GET  /projects/<id>/progress
                  POST /projects/<id>/progress/recalculate   {method?, full?}
                  PUT  /projects/<id>/progress/manual        {percentage}
  Notifications:  GET  /projects/<id>/notifications, PUT /notifications/<id>/read
"""

from flask import Blueprint, jsonify, request

from sitetrack.blueprints import paginate_query
from sitetrack.models.project import Project, Subcontractor
from sitetrack.services import project_service
from sitetrack.services.notification import NotificationService
from sitetrack.services.progress_aggregator import recalculate_all
from sitetrack.services.project_progress_service import (
    get_or_create_progress,
    recalculate_overall,
    set_manual_progress,
)
from sitetrack.utils.errors import E, api_error
from sitetrack.utils.helpers import db_commit_or_error, get_or_404

project_bp = Blueprint("project", __name__, url_prefix="/api/v1")


# ═════════════════════════════════════════════════════════════════════════════
# Projects
# ═════════════════════════════════════════════════════════════════════════════

@project_bp.route("/projects", methods=["GET"])
def list_projects():
    q = Project.query
    status = request.args.get("status")
    if status:
        q = q.filter_by(status=status)
    items, total = paginate_query(q.order_by(Project.code))
    return jsonify({"items": [p.to_dict() for p in items], "total": total})


@project_bp.route("/projects", methods=["POST"])
def create_project():
    data = request.get_json(silent=True) or {}
    project = project_service.create_project(data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(project.to_dict()), 201


@project_bp.route("/projects/<int:project_id>", methods=["GET"])
def get_project(project_id):
    project, err = get_or_404(Project, project_id)
    if err:
        return err
    d = project.to_dict()
    d["progress"] = get_or_create_progress(project_id).to_dict()
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(d)


# ═════════════════════════════════════════════════════════════════════════════
# Subcontractors
# ═════════════════════════════════════════════════════════════════════════════

@project_bp.route("/projects/<int:project_id>/subcontractors", methods=["GET"])
def list_subcontractors(project_id):
    subs = Subcontractor.query.filter_by(project_id=project_id).order_by(Subcontractor.id).all()
    return jsonify({"items": [s.to_dict() for s in subs], "total": len(subs)})


@project_bp.route("/projects/<int:project_id>/subcontractors", methods=["POST"])
def create_subcontractor(project_id):
    data = request.get_json(silent=True) or {}
    sub = project_service.add_subcontractor(project_id, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(sub.to_dict()), 201


@project_bp.route("/subcontractors/<int:sub_id>", methods=["PUT"])
def update_subcontractor(sub_id):
    sub, err = get_or_404(Subcontractor, sub_id)
    if err:
        return err
    project_service.update_subcontractor(sub, request.get_json(silent=True) or {})
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(sub.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# Progress
# ═════════════════════════════════════════════════════════════════════════════

@project_bp.route("/projects/<int:project_id>/progress", methods=["GET"])
def get_progress(project_id):
    progress = get_or_create_progress(project_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(progress.to_dict())


@project_bp.route("/projects/<int:project_id>/progress/recalculate", methods=["POST"])
def recalculate_progress(project_id):
    data = request.get_json(silent=True) or {}
    if data.get("full"):
        recalculate_all(project_id)
    progress = recalculate_overall(project_id, data.get("method"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(progress.to_dict())


@project_bp.route("/projects/<int:project_id>/progress/manual", methods=["PUT"])
def manual_progress(project_id):
    data = request.get_json(silent=True) or {}
    if data.get("percentage") is None:
        return api_error(E.VALIDATION_REQUIRED, "percentage is required")
    progress = set_manual_progress(project_id, data["percentage"])
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(progress.to_dict())


@project_bp.route("/projects/<int:project_id>/notifications", methods=["GET"])
def list_notifications(project_id):
    items, total = NotificationService.list_for_project(
        project_id,
        recipient=request.args.get("recipient"),
        unread_only=request.args.get("unread_only", "").lower() == "true",
        limit=request.args.get("limit", 50, type=int),
        offset=request.args.get("offset", 0, type=int),
    )
    return jsonify({"items": [n.to_dict() for n in items], "total": total})


@project_bp.route("/notifications/<int:notification_id>/read", methods=["PUT"])
def mark_notification_read(notification_id):
    notif = NotificationService.mark_read(notification_id)
    if notif is None:
        return api_error(E.NOT_FOUND, "Notification not found")
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(notif.to_dict())
