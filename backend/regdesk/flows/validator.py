# /regdesk/flows/validator.py

"""
Structural checks for a FlowDefinition.

``check_flow_definition`` returns every problem it finds as a list of
strings; ``validate_flow_definition`` raises FlowDefinitionError when that
list is not empty. The checks run once, before the service accepts traffic.

Rules:
- the root exists and is a Menu
- node ids are unique and every edge points at an existing node
- every node except the root has exactly one parent (edges back to the
  root are allowed and not counted)
- every node is reachable from the root
- nodes without outgoing edges are Terminals
- each Submit leads to a Terminal and retries at a Confirm
- every Input names a registered validator and a field
- a field is asked at most once on any path through a service branch
"""

from collections import Counter
from typing import Callable, Dict, List

from regdesk.errors import FlowDefinitionError
from regdesk.flows.definitions import FlowDefinition, outgoing
from regdesk.models.flow import NodeKind


def _check_node_shape(node, flow: FlowDefinition, validators: Dict[str, Callable]) -> List[str]:
    problems = []
    if node.kind == NodeKind.MENU and not node.options:
        problems.append(f"Menu '{node.id}' has no options")
    if node.kind == NodeKind.INPUT:
        if not node.field_name:
            problems.append(f"Input '{node.id}' has no field name")
        if node.validator not in validators:
            problems.append(f"Input '{node.id}' uses unknown validator '{node.validator}'")
        if not node.next:
            problems.append(f"Input '{node.id}' has no next node")
    if node.kind == NodeKind.CONFIRM:
        target = flow.get(node.next)
        if target is not None and target.kind not in (NodeKind.SUBMIT, NodeKind.TERMINAL):
            problems.append(f"Confirm '{node.id}' must lead to a Submit or Terminal node")
    if node.kind == NodeKind.SUBMIT:
        target = flow.get(node.next)
        if target is not None and target.kind != NodeKind.TERMINAL:
            problems.append(f"Submit '{node.id}' must lead to a Terminal node")
        retry = flow.get(node.retry)
        if retry is None or retry.kind != NodeKind.CONFIRM:
            problems.append(f"Submit '{node.id}' must retry at an existing Confirm node")
    if node.kind == NodeKind.TERMINAL and outgoing(node):
        problems.append(f"Terminal '{node.id}' must not have outgoing edges")
    if node.kind != NodeKind.TERMINAL and not outgoing(node):
        problems.append(f"Leaf '{node.id}' is not a Terminal")
    return problems


def check_flow_definition(flow: FlowDefinition, validators: Dict[str, Callable]) -> List[str]:
    problems: List[str] = []

    duplicates = [node_id for node_id, count in Counter(n.id for n in flow.declared).items() if count > 1]
    for node_id in duplicates:
        problems.append(f"Duplicate node id '{node_id}'")

    root = flow.get(flow.root_id)
    if root is None:
        return problems + [f"Root node '{flow.root_id}' is not defined"]
    if root.kind != NodeKind.MENU:
        problems.append(f"Root node '{flow.root_id}' must be a Menu")

    parents: Counter = Counter()
    for node in flow.nodes.values():
        for target in outgoing(node):
            if target not in flow:
                problems.append(f"Node '{node.id}' points at missing node '{target}'")
            elif target != flow.root_id:
                parents[target] += 1
        problems += _check_node_shape(node, flow, validators)

    for node_id in flow.nodes:
        if node_id != flow.root_id and parents[node_id] != 1:
            problems.append(f"Node '{node_id}' has {parents[node_id]} parents, expected exactly 1")

    reachable = set()
    stack = [flow.root_id]
    while stack:
        node_id = stack.pop()
        if node_id in reachable or node_id not in flow:
            continue
        reachable.add(node_id)
        stack.extend(outgoing(flow.nodes[node_id]))
    for node_id in flow.nodes:
        if node_id not in reachable:
            problems.append(f"Node '{node_id}' is not reachable from the root")

    for entry in flow.branches():
        problems += _repeated_fields(flow, entry.entry_node_id)

    return problems


def _repeated_fields(flow: FlowDefinition, entry_id: str) -> List[str]:
    """Fields asked twice on one path from the branch entry."""
    problems = []
    visited = set()
    stack = [(entry_id, frozenset())]
    while stack:
        node_id, asked = stack.pop()
        if node_id in visited or node_id == flow.root_id or node_id not in flow:
            continue
        visited.add(node_id)
        node = flow.nodes[node_id]
        if node.kind == NodeKind.INPUT and node.field_name:
            if node.field_name in asked:
                problems.append(f"Field '{node.field_name}' is collected twice on the path to '{node_id}'")
            asked = asked | {node.field_name}
        stack.extend((target, asked) for target in outgoing(node))
    return problems


def validate_flow_definition(flow: FlowDefinition, validators: Dict[str, Callable]) -> FlowDefinition:
    problems = check_flow_definition(flow, validators)
    if problems:
        raise FlowDefinitionError(problems)
    return flow
