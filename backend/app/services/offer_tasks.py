from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from app.core.offer_permissions import Identity
from app.models.domain import TASKS_TABLE, TaskPriority, TaskStatus, TaskType
from app.services.offer_errors import PermissionDenied, StateTransitionError, ValidationFailed
from app.services.offer_roles import SELLER_SIDE
from app.services.offer_satellites import SatelliteManager
from app.services.offer_validation import parse_choice

# Moves a task may make; completada and rechazada are final.
TASK_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.pendiente: frozenset({TaskStatus.en_progreso, TaskStatus.completada, TaskStatus.rechazada}),
    TaskStatus.en_progreso: frozenset({TaskStatus.completada, TaskStatus.rechazada, TaskStatus.pendiente}),
    TaskStatus.completada: frozenset(),
    TaskStatus.rechazada: frozenset(),
}

TASK_TYPE_LABELS: dict[TaskType, str] = {
    TaskType.evaluo_comercial: "Evaluación comercial",
    TaskType.estudio_titulo: "Estudio de título",
    TaskType.promesa_compraventa: "Promesa de compraventa",
    TaskType.inspeccion_precompra: "Inspección precompra",
    TaskType.documentacion: "Documentación",
    TaskType.modificacion_titulo: "Modificación de título",
}


class OfferTaskManager(SatelliteManager):
    table = TASKS_TABLE
    entity = "task"

    async def list(self, identity: Identity, offer_id: str) -> list[dict[str, Any]]:
        await self._access(identity, offer_id)
        return await self.rows_for(offer_id)

    async def create(
        self,
        identity: Identity,
        offer_id: str,
        *,
        task_type: TaskType | str,
        description: Optional[str] = None,
        priority: TaskPriority | str = TaskPriority.normal,
        assigned_to: Optional[str] = None,
        due_date: Optional[datetime] = None,
    ) -> dict[str, Any]:
        kind = parse_choice(TaskType, task_type, "task_type")
        prio = parse_choice(TaskPriority, priority, "priority")
        access = await self._access(identity, offer_id)
        access.require(*SELLER_SIDE, action="create_task")
        return await self._insert(
            access,
            {
                "task_type": kind.value,
                "description": description,
                "priority": prio.value,
                "status": TaskStatus.pendiente.value,
                "assigned_to": assigned_to,
                "assigned_by": identity.user_id,
                "due_date": due_date,
            },
            event_type="tarea_creada",
            title=f"Tarea creada: {TASK_TYPE_LABELS[kind]}",
            description=description,
            related={"task_type": kind.value, "priority": prio.value, "assigned_to": assigned_to},
        )

    async def update_status(
        self,
        identity: Identity,
        offer_id: str,
        task_id: str,
        status: TaskStatus | str,
    ) -> dict[str, Any]:
        target = parse_choice(TaskStatus, status, "status")
        offer, listing = await self.roles.load_offer(offer_id)
        task = await self._get(offer_id, task_id)
        # Assignees (appraisers, notaries) need not be a party to the offer.
        is_assignee = task.get("assigned_to") is not None and str(task.get("assigned_to")) == identity.user_id
        if not is_assignee:
            self.roles.require_party(identity, offer, listing)
        access = self.roles.bind(identity, offer, listing)
        if access.role not in SELLER_SIDE and not is_assignee:
            raise PermissionDenied(
                f"role {access.role.value} may not move task {task_id}",
                context={"offer_id": offer_id, "task_id": task_id},
            )

        current = TaskStatus(task.get("status"))
        if target not in TASK_TRANSITIONS[current]:
            raise StateTransitionError(
                f"task cannot move from {current.value} to {target.value}",
                from_status=current.value,
                to_status=target.value,
                user_message="La tarea no admite ese cambio de estado.",
                context={"offer_id": offer_id, "task_id": task_id},
            )

        patch: dict[str, Any] = {"status": target.value}
        if target == TaskStatus.completada:
            patch["completed_at"] = datetime.utcnow()
        return await self._update(
            access,
            task_id,
            patch,
            expected_status=current.value,
            event_type="tarea_actualizada",
            title=f"Tarea {target.value.replace('_', ' ')}",
            related={"old_status": current.value, "new_status": target.value},
        )

    async def update(
        self,
        identity: Identity,
        offer_id: str,
        task_id: str,
        *,
        description: Optional[str] = None,
        priority: TaskPriority | str | None = None,
        assigned_to: Optional[str] = None,
        due_date: Optional[datetime] = None,
    ) -> dict[str, Any]:
        access = await self._access(identity, offer_id)
        access.require(*SELLER_SIDE, action="edit_task")
        await self._get(offer_id, task_id)
        patch: dict[str, Any] = {}
        if description is not None:
            patch["description"] = description
        if priority is not None:
            patch["priority"] = parse_choice(TaskPriority, priority, "priority").value
        if assigned_to is not None:
            patch["assigned_to"] = assigned_to
        if due_date is not None:
            patch["due_date"] = due_date
        if not patch:
            raise ValidationFailed("nothing to update", context={"task_id": task_id})
        return await self._update(
            access,
            task_id,
            patch,
            event_type="tarea_actualizada",
            title="Tarea actualizada",
            related={"changes": sorted(patch)},
        )

    async def delete(self, identity: Identity, offer_id: str, task_id: str) -> None:
        access = await self._access(identity, offer_id)
        access.require(*SELLER_SIDE, action="delete_task")
        task = await self._get(offer_id, task_id)
        await self._delete(
            access,
            task_id,
            event_type="tarea_eliminada",
            title="Tarea eliminada",
            related={"task_type": task.get("task_type"), "old_status": task.get("status")},
        )


def pending_task_count(tasks: list[dict[str, Any]]) -> int:
    return sum(1 for t in tasks if t.get("status") in (TaskStatus.pendiente.value, TaskStatus.en_progreso.value))

