"""Named listings that can be rendered once or followed live."""
from dataclasses import dataclass
from typing import FrozenSet

import crud
from filtering import APPLICATION_FILTER, JOB_FILTER, USER_FILTER, FilterSpec
from subscriptions import Loader


@dataclass(frozen=True)
class ViewDefinition:
    name: str
    load: Loader
    # Collections whose writes change this view's result set
    collections: FrozenSet[str]
    spec: FilterSpec
    admin_only: bool = True


VIEWS = {
    view.name: view
    for view in (
        ViewDefinition(
            name="job-board",
            load=crud.list_active_jobs,
            collections=frozenset({"jobs"}),
            spec=JOB_FILTER,
            admin_only=False,
        ),
        ViewDefinition(
            name="admin-jobs",
            load=crud.list_jobs,
            collections=frozenset({"jobs", "applications"}),
            spec=JOB_FILTER,
        ),
        ViewDefinition(
            name="admin-users",
            load=crud.list_users,
            collections=frozenset({"users"}),
            spec=USER_FILTER,
        ),
        ViewDefinition(
            name="admin-applications",
            load=crud.list_applications,
            collections=frozenset({"applications", "users", "jobs"}),
            spec=APPLICATION_FILTER,
        ),
    )
}
