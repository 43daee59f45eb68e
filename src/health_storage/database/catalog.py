"""
# Collection Catalog

Declarative list of every collection the health service stores, in provisioning order.
`StorageManager.start()` walks `COLLECTION_DESCRIPTORS` top to bottom, so a collection
whose seed data looks something up in another collection must come after it. The
dependency is declared (`depends_on`) and checked before provisioning begins.

## Index Catalog

| Collection | Indexes | Data |
|------------|---------|------|
| `configs` | - | watched for changes |
| `users` | `external_id` (unique), `shibboleth_auth.uiucedu_uin`, `uuid`, `re_post` | |
| `providers` | - | |
| `locations` | `provider_id`, `county_id` | |
| `ctests` | `user_id`, `provider_id`, `order_number` | |
| `manualtests` | `user_id`, `location_id`, `county_id`, `status` | |
| `emanualtests` | `user_id`, `location_id`, `county_id`, `status` | verified tests pruned |
| `resources`, `faq` | - | |
| `news` | `date` | |
| `status` | `user_id` (unique) | |
| `estatus` | `user_id`, `app_version` | |
| `history`, `ehistory` | `user_id`, `date` | |
| `counties` | `guidelines.id`, `county_statuses.id`, `name` | |
| `testtypes` | `results._id` | |
| `rules` | `county_id`, `test_type_id` | |
| `symptomgroups` | `symptoms.id`, `name` (unique) | default groups |
| `symptomrules` | `county_id` (unique) | |
| `symptoms` | `app_version` (unique) | 2.6 content |
| `crules` | `app_version`, `county_id`, `(app_version, county_id)` (unique) | 2.6 rules for Champaign |
| `traceexposures` | `date_added`, `timestamp` | |
| `accessrules` | `county_id` (unique) | |
| `uinoverrides` | `uin` (unique), `category` | |

The unique indexes on `symptoms.app_version`, `crules.(app_version, county_id)` and
`symptomgroups.name` are what turn two processes seeding at the same time into one
insert and one `SeedConflictError` instead of duplicate content.
"""

from typing import List

from health_storage.database.seeding import (
    DefaultDocumentsSeed,
    RegionScopedContentSeed,
    VersionedContentSeed,
    default_symptom_groups,
)
from health_storage.models.storage_models import ASCENDING, CollectionDescriptor, IndexSpec, PrunePolicy

SEED_APP_VERSION = "2.6"
SEED_REGION_NAME = "Champaign"
SYMPTOMS_ASSET = "symptoms_2.6.json"
RULES_ASSET = "rules_2.6.json"

MANUAL_TEST_VERIFIED_STATUS = "verified"

CONFIGS = "configs"
USERS = "users"
PROVIDERS = "providers"
LOCATIONS = "locations"
CTESTS = "ctests"
MANUALTESTS = "manualtests"
EMANUALTESTS = "emanualtests"
RESOURCES = "resources"
FAQ = "faq"
NEWS = "news"
STATUS = "status"
ESTATUS = "estatus"
HISTORY = "history"
EHISTORY = "ehistory"
COUNTIES = "counties"
TESTTYPES = "testtypes"
RULES = "rules"
SYMPTOMGROUPS = "symptomgroups"
SYMPTOMRULES = "symptomrules"
SYMPTOMS = "symptoms"
CRULES = "crules"
TRACEEXPOSURES = "traceexposures"
ACCESSRULES = "accessrules"
UINOVERRIDES = "uinoverrides"


def _manual_test_indexes() -> List[IndexSpec]:
    return [
        IndexSpec.on("user_id", name="user_id_idx"),
        IndexSpec.on("location_id", name="location_id_idx"),
        IndexSpec.on("county_id", name="county_id_idx"),
        IndexSpec.on("status", name="status_idx"),
    ]


def _user_date_indexes() -> List[IndexSpec]:
    return [
        IndexSpec.on("user_id", name="user_id_idx"),
        IndexSpec.on("date", name="date_idx"),
    ]


COLLECTION_DESCRIPTORS: List[CollectionDescriptor] = [
    CollectionDescriptor(name=CONFIGS),
    CollectionDescriptor(
        name=USERS,
        indexes=[
            IndexSpec.on("external_id", unique=True, name="external_id_unique_idx"),
            IndexSpec.on("shibboleth_auth.uiucedu_uin", name="shibboleth_uin_idx"),
            IndexSpec.on("uuid", name="uuid_idx"),
            IndexSpec.on("re_post", name="re_post_idx"),
        ],
    ),
    CollectionDescriptor(name=PROVIDERS),
    CollectionDescriptor(
        name=LOCATIONS,
        indexes=[
            IndexSpec.on("provider_id", name="provider_id_idx"),
            IndexSpec.on("county_id", name="county_id_idx"),
        ],
    ),
    CollectionDescriptor(
        name=CTESTS,
        indexes=[
            IndexSpec.on("user_id", name="user_id_idx"),
            IndexSpec.on("provider_id", name="provider_id_idx"),
            IndexSpec.on("order_number", name="order_number_idx"),
        ],
    ),
    CollectionDescriptor(name=MANUALTESTS, indexes=_manual_test_indexes()),
    CollectionDescriptor(
        name=EMANUALTESTS,
        indexes=_manual_test_indexes(),
        # verified manual tests are not kept once finalized
        prune_policies=[
            PrunePolicy(
                terminal_filter={"status": MANUAL_TEST_VERIFIED_STATUS},
                description="remove verified manual tests",
            )
        ],
    ),
    CollectionDescriptor(name=RESOURCES),
    CollectionDescriptor(name=FAQ),
    CollectionDescriptor(name=NEWS, indexes=[IndexSpec.on("date", name="date_idx")]),
    CollectionDescriptor(name=STATUS, indexes=[IndexSpec.on("user_id", unique=True, name="user_id_unique_idx")]),
    CollectionDescriptor(
        name=ESTATUS,
        indexes=[
            IndexSpec.on("user_id", name="user_id_idx"),
            IndexSpec.on("app_version", name="app_version_idx"),
        ],
    ),
    CollectionDescriptor(name=HISTORY, indexes=_user_date_indexes()),
    CollectionDescriptor(name=EHISTORY, indexes=_user_date_indexes()),
    CollectionDescriptor(
        name=COUNTIES,
        indexes=[
            IndexSpec.on("guidelines.id", name="guidelines_id_idx"),
            IndexSpec.on("county_statuses.id", name="county_statuses_id_idx"),
            IndexSpec.on("name", name="name_idx"),
        ],
    ),
    CollectionDescriptor(name=TESTTYPES, indexes=[IndexSpec.on("results._id", name="results_id_idx")]),
    CollectionDescriptor(
        name=RULES,
        indexes=[
            IndexSpec.on("county_id", name="county_id_idx"),
            IndexSpec.on("test_type_id", name="test_type_id_idx"),
        ],
    ),
    CollectionDescriptor(
        name=SYMPTOMGROUPS,
        indexes=[
            IndexSpec.on("symptoms.id", name="symptoms_id_idx"),
            IndexSpec.on("name", unique=True, name="name_unique_idx"),
        ],
        seed_policies=[DefaultDocumentsSeed("default_groups", default_symptom_groups)],
    ),
    CollectionDescriptor(
        name=SYMPTOMRULES,
        indexes=[IndexSpec.on("county_id", unique=True, name="county_id_unique_idx")],
    ),
    CollectionDescriptor(
        name=SYMPTOMS,
        indexes=[IndexSpec.on("app_version", unique=True, name="app_version_unique_idx")],
        seed_policies=[VersionedContentSeed(SEED_APP_VERSION, SYMPTOMS_ASSET)],
    ),
    CollectionDescriptor(
        name=CRULES,
        indexes=[
            IndexSpec.on("app_version", name="app_version_idx"),
            IndexSpec.on("county_id", name="county_id_idx"),
            IndexSpec(
                keys=(("app_version", ASCENDING), ("county_id", ASCENDING)),
                unique=True,
                name="app_version_county_unique_idx",
            ),
        ],
        seed_policies=[RegionScopedContentSeed(SEED_APP_VERSION, SEED_REGION_NAME, RULES_ASSET, COUNTIES)],
        depends_on=[COUNTIES],
    ),
    CollectionDescriptor(
        name=TRACEEXPOSURES,
        indexes=[
            IndexSpec.on("date_added", name="date_added_idx"),
            IndexSpec.on("timestamp", name="timestamp_idx"),
        ],
    ),
    CollectionDescriptor(name=ACCESSRULES, indexes=[IndexSpec.on("county_id", unique=True, name="county_id_unique_idx")]),
    CollectionDescriptor(
        name=UINOVERRIDES,
        indexes=[
            IndexSpec.on("uin", unique=True, name="uin_unique_idx"),
            IndexSpec.on("category", name="category_idx"),
        ],
    ),
]
