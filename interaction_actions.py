from bson import ObjectId

from database import INTERACTIONS, TransactionScope
from schemas import ActionType, Interaction, InteractionAction


async def record_interaction(
    scope: TransactionScope,
    user: ObjectId,
    action: InteractionAction,
    action_id: ObjectId,
    action_type: ActionType,
) -> ObjectId:
    """Append one entry to the interaction log, inside the caller's transaction."""
    doc = Interaction(user=user, action=action, actionId=action_id, actionType=action_type).model_dump()
    res = await scope[INTERACTIONS].insert_one(doc, session=scope.session)
    return res.inserted_id
