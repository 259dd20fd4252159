"""
Defect Blueprint.

Endpoints:
  GET/POST /projects/<id>/defects           (GET ?status=&stage_id=)
  GET      /defects/<id>                    (with history)
  POST     /defects/<id>/transition         {status, note?}
  GET      /defects/<id>/history
"""

from flask import Blueprint, jsonify, request

from sitetrack.blueprints import actor_id
from sitetrack.models.defect import Defect
from sitetrack.services import defect_service
from sitetrack.utils.errors import E, api_error, refusal
from sitetrack.utils.helpers import db_commit_or_error, get_or_404

defect_bp = Blueprint("defect", __name__, url_prefix="/api/v1")


@defect_bp.route("/projects/<int:project_id>/defects", methods=["GET"])
def list_defects(project_id):
    defects = defect_service.list_defects(
        project_id,
        status=request.args.get("status"),
        stage_id=request.args.get("stage_id", type=int),
    )
    return jsonify({"items": [d.to_dict() for d in defects], "total": len(defects)})


@defect_bp.route("/projects/<int:project_id>/defects", methods=["POST"])
def create_defect(project_id):
    defect = defect_service.create_defect(project_id, request.get_json(silent=True) or {}, actor_id())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(defect.to_dict(include_history=True)), 201


@defect_bp.route("/defects/<int:defect_id>", methods=["GET"])
def get_defect(defect_id):
    defect, err = get_or_404(Defect, defect_id)
    if err:
        return err
    return jsonify(defect.to_dict(include_history=True))


@defect_bp.route("/defects/<int:defect_id>/transition", methods=["POST"])
def transition_defect(defect_id):
    """Move a defect to a new lifecycle status."""
    defect, err = get_or_404(Defect, defect_id)
    if err:
        return err
    data = request.get_json(silent=True) or {}
    new_status = data.get("status")
    if not new_status:
        return api_error(E.VALIDATION_REQUIRED, "status is required")

    ok, detail = defect_service.transition_defect(defect, new_status, actor_id(), data.get("note", ""))
    if not ok:
        return refusal(detail)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(defect.to_dict(include_history=True))


@defect_bp.route("/defects/<int:defect_id>/history", methods=["GET"])
def defect_history(defect_id):
    defect, err = get_or_404(Defect, defect_id)
    if err:
        return err
    entries = [h.to_dict() for h in defect.history]
    return jsonify({"items": entries, "total": len(entries)})
