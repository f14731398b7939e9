"""Region partition of the substrate.

Components with at least two nodes become ``component`` regions; the nodes
left over are grouped by identical mutual-neighbourhood patch into ``patch``
regions. Every node lands in exactly one region.
"""

from __future__ import annotations

from claim_fusion.contracts import Region, Substrate, SubstrateNode


def _statement_ids(node_ids: list[str], nodes: dict[str, SubstrateNode]) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()
    for nid in node_ids:
        for sid in nodes[nid]["statement_ids"]:
            if sid not in seen:
                seen.add(sid)
                out.append(sid)
    return out


def _region(kind: str, node_ids: list[str], source_id: str, nodes: dict[str, SubstrateNode]) -> Region:
    return Region(
        id="",
        kind=kind,
        node_ids=list(node_ids),
        statement_ids=_statement_ids(node_ids, nodes),
        source_id=source_id,
        model_indices=sorted({nodes[n]["model_index"] for n in node_ids}),
    )


def build_regions(substrate: Substrate) -> list[Region]:
    """Partition substrate nodes into regions, ids ``r_<n>``.

    Ordered component regions first, then by size descending.
    """
    nodes = {n["paragraph_id"]: n for n in substrate["nodes"]}
    regions: list[Region] = []
    covered: set[str] = set()

    for component in substrate["topology"]["components"]:
        members = [nid for nid in component["node_ids"] if nid not in covered and nid in nodes]
        if len(members) >= 2:
            regions.append(_region("component", members, component["id"], nodes))
            covered.update(members)

    patches: dict[tuple[str, ...], list[str]] = {}
    for node in substrate["nodes"]:
        nid = node["paragraph_id"]
        if nid in covered:
            continue
        key = tuple(sorted(node["mutual_neighborhood_patch"]))
        patches.setdefault(key, []).append(nid)

    for members in patches.values():
        members = sorted(members)
        regions.append(_region("patch", members, "patch_" + "_".join(members), nodes))
        covered.update(members)

    order = {"component": 0, "patch": 1}
    regions = [
        r for _, r in sorted(
            enumerate(regions),
            key=lambda t: (order[t[1]["kind"]], -len(t[1]["node_ids"]), t[0]),
        )
    ]
    for i, r in enumerate(regions):
        r["id"] = f"r_{i}"
    return regions


def region_of_paragraph(regions: list[Region]) -> dict[str, str]:
    return {nid: r["id"] for r in regions for nid in r["node_ids"]}


def region_of_statement(regions: list[Region]) -> dict[str, str]:
    return {sid: r["id"] for r in regions for sid in r["statement_ids"]}


def attach_regions(substrate: Substrate, regions: list[Region]) -> Substrate:
    """Copy of the substrate with each node's region_id filled in."""
    lookup = region_of_paragraph(regions)
    nodes = [{**n, "region_id": lookup.get(n["paragraph_id"])} for n in substrate["nodes"]]
    return {**substrate, "nodes": nodes}
