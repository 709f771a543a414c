"""
Role templates and the capability check used by every page.

Resolution order for ``evaluate``: an explicit per-user override wins, then the
role template, then deny. Unknown capabilities and unknown roles are denied.
A user can never change their own role, active flag or permissions, whatever
the tables say.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

logger = logging.getLogger(__name__)


class Role(str, Enum):
    ADMINISTRATOR = "administrator"
    MANAGER = "manager"
    OPERATOR = "operator"
    CUSTOMER = "customer"


ROLE_LABELS = {
    Role.ADMINISTRATOR.value: "Administrador",
    Role.MANAGER.value: "Gerente",
    Role.OPERATOR.value: "Operador",
    Role.CUSTOMER.value: "Cliente",
}


class PermissionDenied(Exception):
    def __init__(self, message: str = "Sem permissão para esta ação.", capability: str | None = None):
        super().__init__(message)
        self.message = message
        self.capability = capability


# capability -> (label, category)
CAPABILITIES: dict[str, tuple[str, str]] = {
    "viewUsers": ("Ver utilizadores", "Utilizadores"),
    "createUser": ("Criar utilizadores", "Utilizadores"),
    "editUser": ("Editar dados de utilizadores", "Utilizadores"),
    "editUserPermissions": ("Editar permissões de utilizadores", "Utilizadores"),
    "toggleUserActive": ("Ativar/desativar utilizadores", "Utilizadores"),
    "deleteUser": ("Excluir utilizadores", "Utilizadores"),
    "viewProducts": ("Ver produtos", "Produtos"),
    "createProduct": ("Criar produtos", "Produtos"),
    "editProduct": ("Editar produtos", "Produtos"),
    "deleteProduct": ("Excluir produtos", "Produtos"),
    "viewCategories": ("Ver categorias", "Categorias"),
    "createCategory": ("Criar categorias", "Categorias"),
    "editCategory": ("Editar categorias", "Categorias"),
    "deleteCategory": ("Excluir categorias", "Categorias"),
    "viewClients": ("Ver clientes", "Clientes"),
    "createClient": ("Criar clientes", "Clientes"),
    "editClient": ("Editar clientes", "Clientes"),
    "deleteClient": ("Excluir clientes", "Clientes"),
    "viewSales": ("Ver vendas", "Vendas"),
    "createSale": ("Criar vendas", "Vendas"),
    "editSaleStatus": ("Editar status de vendas", "Vendas"),
    "viewQuotes": ("Ver orçamentos", "Orçamentos"),
    "createQuote": ("Criar orçamentos", "Orçamentos"),
    "editQuote": ("Editar orçamentos", "Orçamentos"),
    "deleteQuote": ("Excluir orçamentos", "Orçamentos"),
    "viewReports": ("Ver relatórios", "Relatórios"),
    "viewSettings": ("Ver configurações", "Configurações"),
    "editSettings": ("Editar configurações", "Configurações"),
}

MANAGER_DENIED = frozenset({
    "createUser", "editUserPermissions", "deleteUser",
    "deleteCategory", "deleteClient", "deleteQuote", "editSettings",
})

OPERATOR_ALLOWED = frozenset({
    "viewProducts", "createProduct", "editProduct",
    "viewCategories", "createCategory", "editCategory",
    "viewClients", "createClient", "editClient",
    "viewSales", "createSale", "editSaleStatus",
    "viewQuotes", "createQuote", "editQuote",
})

ROLE_TEMPLATES: dict[str, dict[str, bool]] = {
    Role.ADMINISTRATOR.value: {cap: True for cap in CAPABILITIES},
    Role.MANAGER.value: {cap: cap not in MANAGER_DENIED for cap in CAPABILITIES},
    Role.OPERATOR.value: {cap: cap in OPERATOR_ALLOWED for cap in CAPABILITIES},
    # own orders only, filtered by clientId in the query
    Role.CUSTOMER.value: {cap: False for cap in CAPABILITIES},
}

# capabilities that mutate role / active / permissions (or remove the account)
SELF_PROTECTED = frozenset({"editUserPermissions", "toggleUserActive", "deleteUser"})
PROTECTED_FIELDS = frozenset({"role", "active", "permissions"})


def _role_value(role: Any) -> str:
    return role.value if isinstance(role, Role) else str(role or "")


def permissions_for_role(role: Any) -> dict[str, bool]:
    return dict(ROLE_TEMPLATES.get(_role_value(role), {}))


def evaluate(
    role: Any,
    permissions: Optional[Mapping[str, Any]],
    capability: str,
    *,
    actor_id: Optional[str] = None,
    target_id: Optional[str] = None,
) -> bool:
    if capability not in CAPABILITIES:
        return False
    if capability in SELF_PROTECTED and actor_id and target_id and actor_id == target_id:
        return False
    if permissions and permissions.get(capability) is not None:
        return bool(permissions[capability])
    template = ROLE_TEMPLATES.get(_role_value(role))
    if template is None:
        return False
    return template.get(capability, False)


def can(user: Any, capability: str, target_id: Optional[str] = None) -> bool:
    """``evaluate`` for anything carrying ``id``, ``role`` and ``permissions``."""
    if user is None:
        return False
    return evaluate(
        getattr(user, "role", None),
        getattr(user, "permissions", None),
        capability,
        actor_id=getattr(user, "id", None),
        target_id=target_id,
    )


def require(user: Any, capability: str, target_id: Optional[str] = None) -> None:
    if not can(user, capability, target_id=target_id):
        logger.warning(f"Denied {capability} for user {getattr(user, 'id', None)} on {target_id}")
        raise PermissionDenied(capability=capability)


def check_user_update(actor: Any, target_id: str, fields: Iterable[str]) -> None:
    """Raise PermissionDenied unless ``actor`` may change ``fields`` on user ``target_id``."""
    fields = set(fields)
    touched = fields & PROTECTED_FIELDS
    if touched and getattr(actor, "id", None) == target_id:
        raise PermissionDenied("Não é possível alterar a sua própria permissão ou status.")
    if fields & {"role", "permissions"}:
        require(actor, "editUserPermissions", target_id)
    if "active" in fields:
        require(actor, "toggleUserActive", target_id)
    if fields - PROTECTED_FIELDS:
        require(actor, "editUser", target_id)


def can_edit_password(editor_role: Any, target_role: Any) -> bool:
    editor = _role_value(editor_role)
    if editor == Role.ADMINISTRATOR.value:
        return True
    if editor == Role.MANAGER.value:
        return _role_value(target_role) in (Role.OPERATOR.value, Role.CUSTOMER.value)
    return False


def capabilities_by_category() -> dict[str, list[tuple[str, str]]]:
    grouped: dict[str, list[tuple[str, str]]] = {}
    for key, (label, category) in CAPABILITIES.items():
        grouped.setdefault(category, []).append((key, label))
    return grouped
