import logging

from flask import current_app, request

from . import ordinances_bp
from ...services.ordinance_catalog_service import OrdinanceCatalogService
from ...services.ordinance_grouping import group_records
from ...services.plan_tiers import Tier
from ...services.visibility_policy_service import VisibilityPolicyService
from ...utils.api_responses import APIResponse

logger = logging.getLogger(__name__)


def _row_payload(record, decision):
    # Full content never leaves the server unless the decision reveals it.
    return {
        'id': record.id,
        'municipality_name': record.municipality_name,
        'title': record.title,
        'category': record.category,
        'updated_at': record.updated_at,
        **decision.to_dict(),
    }


@ordinances_bp.route('/ordinances', methods=['GET'])
def list_ordinances():
    """Grouped ordinance listing with per-record visibility for the current viewer."""
    session_context = current_app.extensions['viewer_session']
    viewer = session_context.current_viewer()
    tier = viewer.tier if viewer is not None else Tier.UNREGISTERED

    catalog = OrdinanceCatalogService.get_catalog()
    context = catalog.context(
        current_app.config['SURVEY_GROUP_KEY'],
        current_app.config['UNCATEGORIZED_GROUP_KEY'],
    )
    working = catalog.filter(
        department=request.args.get('department'),
        category=request.args.get('category'),
        search=request.args.get('q'),
    )
    decisions = VisibilityPolicyService.get_visibility_decisions(tier, working, context=context)
    decision_by_id = {decision.record_id: decision for decision in decisions}

    groups = []
    for group_key, records in group_records(working, context.uncategorized_group_key).items():
        groups.append({
            'group_key': group_key,
            'ordinances': [_row_payload(record, decision_by_id[record.id]) for record in records],
        })

    return APIResponse.success({
        'plan': tier.value,
        'pending_change': bool(viewer and viewer.pending_change),
        'upgrade_prompt': VisibilityPolicyService.upgrade_prompt(tier),
        'departments': catalog.departments(),
        'categories': catalog.categories(),
        'total': len(working),
        'groups': groups,
    })
