"""
Acceptance Blueprint — stages and checklist items.

Endpoints:
  Stage:  GET/POST /projects/<id>/acceptance-stages
          GET      /acceptance-stages/<id>
          POST     /acceptance-stages/<id>/approve     {step}
          POST     /acceptance-stages/<id>/reject      {reason}
          POST     /acceptance-stages/<id>/resubmit
  Item:   GET/POST /acceptance-stages/<id>/items
          PUT/DELETE /acceptance-items/<id>
          POST     /acceptance-items/<id>/submit
          POST     /acceptance-items/<id>/workflow-approve   {step}
          POST     /acceptance-items/<id>/workflow-reject    {reason}
          POST     /acceptance-items/<id>/approve            {notes?}
          POST     /acceptance-items/<id>/reject             {reason}
          POST     /acceptance-items/<id>/reset

Refused transitions answer 409 with the refusal reason.
"""

from flask import Blueprint, jsonify, request

from sitetrack.blueprints import actor_id
from sitetrack.models.acceptance import AcceptanceItem, AcceptanceStage
from sitetrack.services import acceptance_service
from sitetrack.utils.errors import E, api_error, refusal
from sitetrack.utils.helpers import db_commit_or_error, get_or_404

acceptance_bp = Blueprint("acceptance", __name__, url_prefix="/api/v1")


def _commit_transition(ok, detail, obj):
    """Commit on success; refusals leave nothing behind to commit."""
    if not ok:
        return refusal(detail)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(obj.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# Stages
# ═════════════════════════════════════════════════════════════════════════════

@acceptance_bp.route("/projects/<int:project_id>/acceptance-stages", methods=["GET"])
def list_stages(project_id):
    q = AcceptanceStage.query.filter_by(project_id=project_id)
    status = request.args.get("status")
    if status:
        q = q.filter_by(status=status)
    stages = q.order_by(AcceptanceStage.sequence, AcceptanceStage.id).all()
    return jsonify({"items": [s.to_dict() for s in stages], "total": len(stages)})


@acceptance_bp.route("/projects/<int:project_id>/acceptance-stages", methods=["POST"])
def create_stage(project_id):
    stage = acceptance_service.create_stage(project_id, request.get_json(silent=True) or {})
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(stage.to_dict()), 201


@acceptance_bp.route("/acceptance-stages/<int:stage_id>", methods=["GET"])
def get_stage(stage_id):
    stage, err = get_or_404(AcceptanceStage, stage_id, "Acceptance stage")
    if err:
        return err
    return jsonify(stage.to_dict(include_items=True))


@acceptance_bp.route("/acceptance-stages/<int:stage_id>/approve", methods=["POST"])
def approve_stage(stage_id):
    stage, err = get_or_404(AcceptanceStage, stage_id, "Acceptance stage")
    if err:
        return err
    step = (request.get_json(silent=True) or {}).get("step")
    if not step:
        return api_error(E.VALIDATION_REQUIRED, "step is required")
    ok, detail = acceptance_service.approve_stage(stage, step, actor_id())
    return _commit_transition(ok, detail, stage)


@acceptance_bp.route("/acceptance-stages/<int:stage_id>/reject", methods=["POST"])
def reject_stage(stage_id):
    stage, err = get_or_404(AcceptanceStage, stage_id, "Acceptance stage")
    if err:
        return err
    reason = (request.get_json(silent=True) or {}).get("reason")
    if not reason:
        return api_error(E.VALIDATION_REQUIRED, "reason is required")
    ok, detail = acceptance_service.reject_stage(stage, reason, actor_id())
    return _commit_transition(ok, detail, stage)


@acceptance_bp.route("/acceptance-stages/<int:stage_id>/resubmit", methods=["POST"])
def resubmit_stage(stage_id):
    stage, err = get_or_404(AcceptanceStage, stage_id, "Acceptance stage")
    if err:
        return err
    ok, detail = acceptance_service.resubmit_stage(stage, actor_id())
    return _commit_transition(ok, detail, stage)


# ═════════════════════════════════════════════════════════════════════════════
# Items
# ═════════════════════════════════════════════════════════════════════════════

@acceptance_bp.route("/acceptance-stages/<int:stage_id>/items", methods=["GET"])
def list_items(stage_id):
    stage, err = get_or_404(AcceptanceStage, stage_id, "Acceptance stage")
    if err:
        return err
    items = stage.items.all()
    return jsonify({"items": [i.to_dict() for i in items], "total": len(items)})


@acceptance_bp.route("/acceptance-stages/<int:stage_id>/items", methods=["POST"])
def create_item(stage_id):
    stage, err = get_or_404(AcceptanceStage, stage_id, "Acceptance stage")
    if err:
        return err
    item = acceptance_service.create_item(stage, request.get_json(silent=True) or {})
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(item.to_dict()), 201


@acceptance_bp.route("/acceptance-items/<int:item_id>", methods=["PUT"])
def update_item(item_id):
    item, err = get_or_404(AcceptanceItem, item_id, "Acceptance item")
    if err:
        return err
    acceptance_service.update_item(item, request.get_json(silent=True) or {})
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(item.to_dict())


@acceptance_bp.route("/acceptance-items/<int:item_id>", methods=["DELETE"])
def delete_item(item_id):
    item, err = get_or_404(AcceptanceItem, item_id, "Acceptance item")
    if err:
        return err
    acceptance_service.delete_item(item)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"deleted": True}), 200


@acceptance_bp.route("/acceptance-items/<int:item_id>/submit", methods=["POST"])
def submit_item(item_id):
    item, err = get_or_404(AcceptanceItem, item_id, "Acceptance item")
    if err:
        return err
    ok, detail = acceptance_service.submit_item(item, actor_id())
    return _commit_transition(ok, detail, item)


@acceptance_bp.route("/acceptance-items/<int:item_id>/workflow-approve", methods=["POST"])
def workflow_approve_item(item_id):
    item, err = get_or_404(AcceptanceItem, item_id, "Acceptance item")
    if err:
        return err
    step = (request.get_json(silent=True) or {}).get("step")
    if not step:
        return api_error(E.VALIDATION_REQUIRED, "step is required")
    ok, detail = acceptance_service.approve_item_step(item, step, actor_id())
    return _commit_transition(ok, detail, item)


@acceptance_bp.route("/acceptance-items/<int:item_id>/workflow-reject", methods=["POST"])
def workflow_reject_item(item_id):
    item, err = get_or_404(AcceptanceItem, item_id, "Acceptance item")
    if err:
        return err
    reason = (request.get_json(silent=True) or {}).get("reason")
    if not reason:
        return api_error(E.VALIDATION_REQUIRED, "reason is required")
    ok, detail = acceptance_service.workflow_reject_item(item, reason, actor_id())
    return _commit_transition(ok, detail, item)


@acceptance_bp.route("/acceptance-items/<int:item_id>/approve", methods=["POST"])
def approve_item(item_id):
    item, err = get_or_404(AcceptanceItem, item_id, "Acceptance item")
    if err:
        return err
    notes = (request.get_json(silent=True) or {}).get("notes")
    ok, detail = acceptance_service.approve_item(item, actor_id(), notes)
    return _commit_transition(ok, detail, item)


@acceptance_bp.route("/acceptance-items/<int:item_id>/reject", methods=["POST"])
def reject_item(item_id):
    item, err = get_or_404(AcceptanceItem, item_id, "Acceptance item")
    if err:
        return err
    reason = (request.get_json(silent=True) or {}).get("reason")
    if not reason:
        return api_error(E.VALIDATION_REQUIRED, "reason is required")
    ok, detail = acceptance_service.reject_item(item, reason, actor_id())
    return _commit_transition(ok, detail, item)


@acceptance_bp.route("/acceptance-items/<int:item_id>/reset", methods=["POST"])
def reset_item(item_id):
    item, err = get_or_404(AcceptanceItem, item_id, "Acceptance item")
    if err:
        return err
    ok, detail = acceptance_service.reset_acceptance(item)
    return _commit_transition(ok, detail, item)
