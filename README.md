# bigbang

Building blocks for an xDS control plane that keeps Envoy resources
(listeners, clusters, routes, endpoints, filters and extensions) in MongoDB.
It is a library: you call its functions and classes from your own service.

## Modules

- **`bigbang.access`**: `Role`, `UserDetails` and `RequestDetails` describe
  who is asking and what for. `user_details_from_context` builds user details
  from authentication values, falling back to a viewer with no groups.
  `build_request_details` assembles request details from path and query
  parameters, and `extract_metadata` collects `metadata_*` query parameters.
  `check_role(method, user)` returns the user's role when it permits the HTTP
  method (admins and owners always, editors for GET/POST/PUT/DELETE, viewers
  for GET only) and raises `NotAuthorizedError` otherwise.
- **`bigbang.filters`**: `add_user_filter` restricts a MongoDB filter to the
  request's project and, for users who are neither owners nor admins, to
  resources shared with their groups or user id. `add_resource_id_filter`
  adds the request's ObjectId and raises `ValueError` for a malformed id.
  `permissions_for` gives the permissions of a new resource,
  `is_default_resource` recognises the built-in defaults,
  `find_dependents` lists resources matching downstream queries, and
  `transform_generals` flattens records into their `general` section plus an
  `id`.
- **`bigbang.bootstrap`**: `get_bootstrap(name, project, version, authority,
  now=None)` builds the Envoy bootstrap document that goes with a listener,
  pointing at the `bigbang-controller` cluster over delta ADS.
- **`bigbang.graph`**: `TypeRegistry` describes resource types (collection,
  UI link, readable name, upstream JSON paths, downstream query builder).
  `Depend`, `Node` and `Graph` model the dependency graph; `Graph.add_node`
  and `Graph.add_edge` skip incomplete nodes, duplicates and self edges, and
  `Graph.to_dict` returns JSON-ready data. `TTLCache` is a thread-safe cache
  whose entries expire (five minutes by default), with `cleanup` and a
  background `start_cleanup`.
- **`bigbang.dependency`**: `DependencyResolver.resource_dependencies` walks
  upstream references (at the type's JSON paths and in `typed_config` and
  `config_discovery`) and downstream dependents, and returns a `Graph`.
  `json_path_values` reads values at a dotted path, where `#` maps over an
  array.
- **`bigbang.poker`**: `ChangeDetector.detect` follows a change down through
  dependents to every affected listener and calls the `poke` function you
  supply once per listener, recording the walk in a `Processed`.
  `handle_resource_change` does this only when the request publishes.
- **`bigbang.templates`**: resource templates for clusters, endpoints, HTTP
  connection managers, listeners, routes, virtual hosts and TCP proxies, and
  `render_template` to fill them in. Missing values render as `<no value>`.
- **`bigbang.scenario`**: `get_scenarios` and `get_scenario` describe the
  ready-made scenarios (basic HTTP, HTTP with EDS, routing, virtual hosts,
  TCP proxy); an unknown id raises `ScenarioNotFoundError`.
  `ScenarioService.set_scenario` renders every template the request has data
  for, saves each resource through the backend for its type, and on failure
  calls `rollback`, which deletes what was created and retries deletes that
  `is_dependency_error` reports as blocked while progress is made.
- **`bigbang.crud`**: `ResourceStore` gets, lists and deletes xDS resources
  and extensions and builds the custom resource list. Deleting a default
  resource, or one that others still depend on, raises `ResourceError`;
  deleting a listener also deletes its bootstrap. `build_delete_filter` and
  `build_list_filters` build the filters it uses.

## Example

```python
from bigbang.access import Role, UserDetails, check_role
from bigbang.scenario import get_scenario

check_role("GET", UserDetails(role=Role.VIEWER))  # returns Role.VIEWER
scenario = get_scenario("1")
print(scenario.name)  # Basic HTTP Service
```

## What it does not do

- There is no HTTP server, no routes and no command-line program; wire the
  functions into a web framework of your choice.
- `ResourceStore` does not create or update resources. `ScenarioService`
  saves and deletes through backend objects you provide (anything with
  `save(resource, details)` and `delete(resource, details)`).
- No resource types are built in: fill a `TypeRegistry` with the types,
  collections, upstream paths and downstream queries of your deployment.
- Nothing here talks to Envoy; `ChangeDetector` only calls the `poke`
  function it is given.

## Installing

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```