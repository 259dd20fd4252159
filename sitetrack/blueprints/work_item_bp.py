"""
Work Item Blueprint — task tree and daily progress logs.

Endpoints:
  WorkItem:  GET/POST /projects/<id>/work-items   (GET ?tree=true for nested)
             GET/PUT/DELETE /work-items/<id>
             POST /work-items/<id>/recompute
  DailyLog:  GET/POST /projects/<id>/daily-logs   (GET ?work_item_id=)
             PUT/DELETE /daily-logs/<id>
"""

from flask import Blueprint, jsonify, request

from sitetrack.blueprints import actor_id
from sitetrack.models.work_item import DailyProgressLog, WorkItem
from sitetrack.services import daily_log_service, work_item_service
from sitetrack.services.progress_aggregator import recompute
from sitetrack.utils.helpers import db_commit_or_error, get_or_404

work_item_bp = Blueprint("work_item", __name__, url_prefix="/api/v1")


# ═════════════════════════════════════════════════════════════════════════════
# Work items
# ═════════════════════════════════════════════════════════════════════════════

@work_item_bp.route("/projects/<int:project_id>/work-items", methods=["GET"])
def list_work_items(project_id):
    if request.args.get("tree", "").lower() == "true":
        return jsonify({"items": work_item_service.build_tree(project_id)})
    items = (
        WorkItem.query.filter_by(project_id=project_id)
        .order_by(WorkItem.parent_id, WorkItem.sort_order, WorkItem.id)
        .all()
    )
    return jsonify({"items": [i.to_dict() for i in items], "total": len(items)})


@work_item_bp.route("/projects/<int:project_id>/work-items", methods=["POST"])
def create_work_item(project_id):
    item = work_item_service.create_work_item(project_id, request.get_json(silent=True) or {})
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(item.to_dict()), 201


@work_item_bp.route("/work-items/<int:item_id>", methods=["GET"])
def get_work_item(item_id):
    item, err = get_or_404(WorkItem, item_id, "Work item")
    if err:
        return err
    return jsonify(item.to_dict())


@work_item_bp.route("/work-items/<int:item_id>", methods=["PUT"])
def update_work_item(item_id):
    item, err = get_or_404(WorkItem, item_id, "Work item")
    if err:
        return err
    work_item_service.update_work_item(item, request.get_json(silent=True) or {})
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(item.to_dict())


@work_item_bp.route("/work-items/<int:item_id>", methods=["DELETE"])
def delete_work_item(item_id):
    item, err = get_or_404(WorkItem, item_id, "Work item")
    if err:
        return err
    work_item_service.delete_work_item(item)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"deleted": True}), 200


@work_item_bp.route("/work-items/<int:item_id>/recompute", methods=["POST"])
def recompute_work_item(item_id):
    item, err = get_or_404(WorkItem, item_id, "Work item")
    if err:
        return err
    derived = recompute(item.id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"id": item.id, "completion_percentage": derived.percentage, "status": derived.status})


# ═════════════════════════════════════════════════════════════════════════════
# Daily progress logs
# ═════════════════════════════════════════════════════════════════════════════

@work_item_bp.route("/projects/<int:project_id>/daily-logs", methods=["GET"])
def list_daily_logs(project_id):
    logs = daily_log_service.list_logs(project_id, request.args.get("work_item_id", type=int))
    return jsonify({"items": [log.to_dict() for log in logs], "total": len(logs)})


@work_item_bp.route("/projects/<int:project_id>/daily-logs", methods=["POST"])
def create_daily_log(project_id):
    log = daily_log_service.create_log(project_id, request.get_json(silent=True) or {}, actor_id())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(log.to_dict()), 201


@work_item_bp.route("/daily-logs/<int:log_id>", methods=["PUT"])
def update_daily_log(log_id):
    log, err = get_or_404(DailyProgressLog, log_id, "Daily log")
    if err:
        return err
    daily_log_service.update_log(log, request.get_json(silent=True) or {})
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(log.to_dict())


@work_item_bp.route("/daily-logs/<int:log_id>", methods=["DELETE"])
def delete_daily_log(log_id):
    log, err = get_or_404(DailyProgressLog, log_id, "Daily log")
    if err:
        return err
    daily_log_service.delete_log(log)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"deleted": True}), 200
