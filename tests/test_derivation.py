import pytest

from app.services.derivation import (
    UNGROUPED_TITLE,
    build_container_stats_lookup,
    build_launchpad_tiles,
    build_server_metrics,
    container_matches_identifier,
    format_bytes,
    get_service_host,
    group_containers_by_compose_file,
    infer_service_links_from_ports,
    is_container_running,
    is_local_docker_unavailable_error,
    parse_docker_labels,
    parse_human_size_to_bytes,
    parse_used_memory,
    resolve_compose_group,
    resolve_container_stat,
)


def _container(name: str, labels: str = "", ports: str = "", cid: str | None = None) -> dict:
    return {
        "ID": cid or f"{name}000000000000"[:12],
        "Names": name,
        "Image": f"{name}:latest",
        "Labels": labels,
        "Ports": ports,
        "State": "running",
        "Status": "Up 1 minute",
    }


def test_compose_groups_sorted_with_ungrouped_last() -> None:
    containers = [
        _container("loose"),
        _container("web-1", "com.docker.compose.project=web"),
        _container("api-1", "com.docker.compose.project=api"),
    ]
    groups = group_containers_by_compose_file(containers, "localhost", {})
    assert [g.title for g in groups] == ["api", "web", UNGROUPED_TITLE]


def test_ungrouped_stays_last_even_if_alphabetically_first() -> None:
    containers = [
        _container("z", "com.docker.compose.project=zeta"),
        _container("a"),
        _container("b", "com.docker.compose.project=Alpha"),
    ]
    groups = group_containers_by_compose_file(containers, "localhost", {})
    assert [g.title for g in groups] == ["Alpha", "zeta", UNGROUPED_TITLE]


def test_containers_sorted_by_name_within_group() -> None:
    containers = [
        _container("web-2", "com.docker.compose.project=web"),
        _container("web-1", "com.docker.compose.project=web"),
    ]
    (group,) = group_containers_by_compose_file(containers, "localhost", {})
    assert [c["Names"] for c in group.containers] == ["web-1", "web-2"]


def test_working_dir_grouping_without_project() -> None:
    labels = (
        "com.docker.compose.project.working_dir=/srv/media,"
        "com.docker.compose.project.config_files=/srv/media/compose.yml"
    )
    resolved = resolve_compose_group(_container("jellyfin", labels))
    assert resolved.key == "compose:/srv/media::/srv/media/compose.yml"
    assert resolved.title == "media"
    assert resolved.detail == "/srv/media • compose.yml"


def test_project_group_detail_lists_config_basenames() -> None:
    labels = "com.docker.compose.project=shop,com.docker.compose.project.config_files=/opt/shop/docker-compose.yml"
    resolved = resolve_compose_group(_container("cart", labels))
    assert resolved.key == "project:shop"
    assert resolved.detail == "docker-compose.yml"


def test_group_merges_service_links_and_attaches_stats() -> None:
    containers = [
        _container("web-1", "com.docker.compose.project=web", "0.0.0.0:8081->80/tcp", cid="aaaaaaaaaaaa"),
        _container("web-2", "com.docker.compose.project=web", "0.0.0.0:8080->80/tcp, 0.0.0.0:8081->80/tcp"),
    ]
    lookup = build_container_stats_lookup([{"ID": "aaaaaaaaaaaa", "Name": "web-1", "CPUPerc": "2.0%"}])
    (group,) = group_containers_by_compose_file(containers, "nas.local", lookup)

    assert [link.url for link in group.service_links] == [
        "http://nas.local:8080",
        "http://nas.local:8081",
    ]
    by_name = {c["Names"]: c for c in group.containers}
    assert by_name["web-1"]["resource_cpu"] == "2.0%"
    assert by_name["web-2"]["resource_cpu"] == "-"


def test_port_inference_filters_udp_and_sorts() -> None:
    links = infer_service_links_from_ports(
        "0.0.0.0:8080->80/tcp, 443->443/tcp, 9999->9999/udp", "myhost"
    )
    assert [(link.url, link.protocol) for link in links] == [
        ("https://myhost:443", "https"),
        ("http://myhost:8080", "http"),
    ]
    assert links[1].label == "HTTP 8080"
    assert links[1].container_port == 80


def test_port_inference_dedupes_ipv6_duplicates() -> None:
    links = infer_service_links_from_ports("0.0.0.0:3000->3000/tcp, [::]:3000->3000/tcp", "h")
    assert [link.url for link in links] == ["http://h:3000"]


def test_port_inference_container_port_443_is_https() -> None:
    (link,) = infer_service_links_from_ports("8443->443/tcp", "h")
    assert link.url == "https://h:8443"


def test_port_inference_empty_and_unpublished() -> None:
    assert infer_service_links_from_ports("", "h") == []
    assert infer_service_links_from_ports("80/tcp", "h") == []


def test_service_host() -> None:
    assert get_service_host({"is_local": True, "host": "10.1.1.1"}) == "localhost"
    assert get_service_host({"is_local": False, "host": " https://nas.lan "}) == "nas.lan"
    assert get_service_host({"is_local": False, "host": ""}) == "localhost"


def test_parse_docker_labels_skips_malformed_pairs() -> None:
    assert parse_docker_labels("a=1,=2,novalue,b = two ") == {"a": "1", "b": "two"}
    assert parse_docker_labels("") == {}


@pytest.mark.parametrize(
    "value,expected",
    [
        ("512B", 512),
        ("1.5kB", 1500),
        ("2MB", 2_000_000),
        ("1KiB", 1024),
        ("256MiB", 256 * 1024**2),
        ("1.5GiB", 1.5 * 1024**3),
        ("", None),
        ("12 parsecs", None),
    ],
)
def test_parse_human_size(value, expected) -> None:
    assert parse_human_size_to_bytes(value) == expected


def test_parse_used_memory() -> None:
    assert parse_used_memory("100MiB / 1.944GiB") == 100 * 1024**2
    assert parse_used_memory("--") is None


@pytest.mark.parametrize(
    "value,expected",
    [
        (-1, "-"),
        (float("inf"), "-"),
        (512, "512 B"),
        (1536, "1.50 KiB"),
        (20 * 1024**2, "20.0 MiB"),
        (300 * 1024**3, "300 GiB"),
    ],
)
def test_format_bytes(value, expected) -> None:
    assert format_bytes(value) == expected


def test_server_metrics_aggregation() -> None:
    host = {"NCPU": 8, "MemTotal": 8 * 1024**3}
    stats = [
        {"MemUsage": "1GiB / 8GiB"},
        {"MemUsage": "512MiB / 8GiB"},
        {"MemUsage": "garbage"},
    ]
    metrics = build_server_metrics(host, stats, "")
    assert metrics.cpu_cores == "8"
    assert metrics.total_memory == "8.00 GiB"
    assert metrics.used_memory == "1.50 GiB"
    assert metrics.memory_utilization == "18.8%"
    assert metrics.monitored_containers == 3
    assert metrics.available is True


def test_server_metrics_unknown_total_memory() -> None:
    metrics = build_server_metrics({"NCPU": 2}, [], "")
    assert metrics.memory_utilization == "-"
    assert metrics.total_memory == "-"
    assert metrics.used_memory == "-"
    assert metrics.available is True

    zero = build_server_metrics({"MemTotal": 0}, [], "")
    assert zero.memory_utilization == "-"
    assert zero.available is False


def test_server_metrics_without_data_is_unavailable() -> None:
    metrics = build_server_metrics(None, [], "docker down")
    assert metrics.available is False
    assert metrics.warning == "docker down"
    assert metrics.cpu_cores == "-"


def test_stats_lookup_matches_short_id_and_name() -> None:
    lookup = build_container_stats_lookup([{"ID": "0123456789abcdef", "Name": "DB"}])
    assert resolve_container_stat({"ID": "0123456789ab", "Names": "other"}, lookup) is not None
    assert resolve_container_stat({"ID": "", "Names": "db"}, lookup) is not None
    assert resolve_container_stat({"ID": "ffff", "Names": "x"}, lookup) is None


def test_running_and_identifier_matching() -> None:
    assert is_container_running({"State": "running"})
    assert is_container_running({"State": "", "Status": "Up 3 seconds"})
    assert not is_container_running({"State": "exited", "Status": "Exited (1)"})

    container = {"ID": "abc123def456", "Names": "web"}
    assert container_matches_identifier(container, "web")
    assert container_matches_identifier(container, "abc123")
    assert not container_matches_identifier(container, "  ")
    assert not container_matches_identifier(container, "we")


def test_local_docker_unavailable_detection() -> None:
    assert is_local_docker_unavailable_error(
        RuntimeError("Cannot connect to the Docker daemon at unix:///var/run/docker.sock")
    )
    assert is_local_docker_unavailable_error("error during connect: open //./pipe/dockerDesktopLinuxEngine")
    assert not is_local_docker_unavailable_error(RuntimeError("permission denied"))
    assert not is_local_docker_unavailable_error(None)


def test_launchpad_tiles() -> None:
    containers = [
        _container("plex", ports="0.0.0.0:32400->32400/tcp"),
        _container("db"),
        _container("grafana", ports="3000->3000/tcp"),
    ]
    tiles = build_launchpad_tiles(containers, "server")
    assert [t["name"] for t in tiles] == ["grafana", "plex"]
    assert tiles[0]["launch_url"] == "http://server:3000"
    assert tiles[0]["icon_color_class"] == "launchpad-icon-grafana"
    assert tiles[1]["icon_class"] == "fa-solid fa-circle-play"
