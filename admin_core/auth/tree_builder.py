"""
树形结构构建
菜单树、按角色裁剪的菜单树（含祖先节点）以及按模块分组的权限树

所有遍历都基于 id 索引并使用已访问集合，parent_id 指向自身、
指向不存在的节点或形成环时都不会导致死循环。
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Any

from .models import Menu, Permission, Role, RoleCode, module_key

MODULE_LABELS = {
    'user': '用户',
    'role': '角色',
    'menu': '菜单',
    'permission': '权限',
    'dashboard': '仪表盘',
    'operationLog': '操作日志',
}


@dataclass
class MenuNode:
    """菜单树节点"""
    menu: Menu
    children: List['MenuNode'] = field(default_factory=list)

    @property
    def order(self) -> int:
        return self.menu.order

    def to_dict(self) -> Dict[str, Any]:
        data = self.menu.to_dict()
        data['children'] = [child.to_dict() for child in self.children]
        return data


def _sort_nodes(nodes: List[MenuNode]) -> List[MenuNode]:
    return sorted(nodes, key=lambda node: node.order)


def build_menu_tree(menus: Iterable[Menu], include_ids: Optional[Set[str]] = None) -> List[MenuNode]:
    """
    构建菜单森林

    - 父节点不存在（或不在 include_ids 内）的节点提升为根节点
    - 同级节点按 order 升序
    - 仅由环构成、无法从任何根到达的节点，按 order 取第一个断环作为根

    Args:
        menus: 全部菜单
        include_ids: 仅保留这些 id 的菜单，None 表示不过滤

    Returns:
        根节点列表
    """
    ordered = sorted(
        (m for m in menus if m.id and (include_ids is None or m.id in include_ids)),
        key=lambda m: m.order
    )
    by_id = {m.id: m for m in ordered}

    children: Dict[str, List[Menu]] = {}
    roots: List[Menu] = []
    for menu in ordered:
        parent_id = menu.parent_id
        if parent_id and parent_id != menu.id and parent_id in by_id:
            children.setdefault(parent_id, []).append(menu)
        else:
            roots.append(menu)

    visited: Set[str] = set()

    def grow(root: Menu) -> MenuNode:
        root_node = MenuNode(root)
        visited.add(root.id)
        stack = [root_node]
        while stack:
            node = stack.pop()
            for child in children.get(node.menu.id, []):
                if child.id in visited:
                    continue
                visited.add(child.id)
                child_node = MenuNode(child)
                node.children.append(child_node)
                stack.append(child_node)
        return root_node

    forest = [grow(menu) for menu in roots]

    for menu in ordered:
        if menu.id not in visited:
            forest.append(grow(menu))

    return _sort_nodes(forest)


def collect_with_ancestors(menu_ids: Iterable[str], menus: Iterable[Menu]) -> Set[str]:
    """收集指定菜单及其全部祖先的 id，忽略不存在的菜单"""
    by_id = {m.id: m for m in menus if m.id}
    collected: Set[str] = set()

    for menu_id in menu_ids:
        current = str(menu_id) if menu_id else None
        while current and current in by_id and current not in collected:
            collected.add(current)
            current = by_id[current].parent_id

    return collected


def filter_inactive(nodes: List[MenuNode]) -> List[MenuNode]:
    """
    过滤禁用节点

    禁用节点本身被移除，其子节点仍按各自的启用状态判断，
    保留下来的子节点挂到禁用节点原来的位置上。
    """
    result: List[MenuNode] = []
    for node in nodes:
        kept_children = filter_inactive(node.children)
        if node.menu.is_active:
            node.children = kept_children
            result.append(node)
        else:
            result.extend(kept_children)
    return _sort_nodes(result)


def build_role_scoped_menu_tree(
    role: Optional[Role],
    menus: List[Menu],
    super_admin_code: str = "SUPER_ADMIN"
) -> List[MenuNode]:
    """
    构建角色可见的菜单森林

    超级管理员返回完整菜单树；其他角色从直接分配的菜单出发向上收集祖先，
    保证返回的森林带有完整路径，最后过滤禁用节点。
    """
    if role is None:
        return []

    if role.code == RoleCode(super_admin_code):
        return build_menu_tree(menus)

    if not role.menus:
        return []

    scoped_ids = collect_with_ancestors(role.menus, menus)
    return filter_inactive(build_menu_tree(menus, include_ids=scoped_ids))


def build_permission_tree(permissions: Iterable[Permission]) -> List[Dict[str, Any]]:
    """
    按模块分组构建权限树

    模块键为权限编码第一个冒号之前的部分，分组按模块键排序，组内按编码排序。
    """
    groups: Dict[str, List[Permission]] = {}
    for permission in permissions:
        groups.setdefault(module_key(permission.code), []).append(permission)

    tree = []
    for key in sorted(groups):
        tree.append({
            'id': f'module:{key}',
            'label': MODULE_LABELS.get(key, key),
            'children': [
                {
                    'id': permission.id,
                    'label': f'{permission.name} ({permission.code})',
                    'code': permission.code
                }
                for permission in sorted(groups[key], key=lambda p: p.code)
            ]
        })
    return tree
