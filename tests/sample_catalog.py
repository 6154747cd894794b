"""
Catalog shared by the local engine and command line tests.
"""

import json

SAMPLE_CATALOG = {
    "projects": [
        {
            "name": "dstage1",
            "host": "etl-host",
            "jobs": [
                {
                    "name": "LoadCustomers",
                    "controller": "Nightly",
                    "user_status": "loaded",
                    "stages": [
                        {
                            "name": "ReadCustomers",
                            "type": "CSeqFileStage",
                            "links": [{"name": "lnkRaw", "rows": 120}],
                        },
                        {
                            "name": "Transform",
                            "links": [
                                {"name": "lnkOut", "rows": 100},
                                {"name": "lnkReject", "rows": 20},
                            ],
                        },
                    ],
                    "params": [
                        {
                            "name": "SourceDir",
                            "type": "Pathname",
                            "help_text": "Input directory",
                            "prompt": "Source directory",
                            "default": "/data/in",
                        },
                        {"name": "BatchSize", "type": "Integer", "default": 500, "prompt_at_run": True},
                        {"name": "Threshold", "type": "Float", "default": 0.25},
                        {"name": "Region", "type": "List", "default": "EU", "list_values": ["EU", "US", "APAC"]},
                        {"name": "DbPassword", "type": "Encrypted", "default": "secret"},
                    ],
                },
                {
                    "name": "WarnJob",
                    "outcome": "warn",
                    "warnings": 3,
                    "stages": [{"name": "Only", "links": [{"name": "lnkA", "rows": 10}]}],
                },
                {
                    "name": "FailJob",
                    "outcome": "fail",
                    "stages": [{"name": "Broken", "links": [{"name": "lnkB", "rows": 5}]}],
                },
                {"name": "SlowJob", "duration": 3600},
                {"name": "Uncompiled", "compiled": False},
            ],
        },
        {"name": "empty"},
    ]
}


def write_catalog(path: str, catalog: dict = SAMPLE_CATALOG) -> str:
    with open(path, "w") as f:
        json.dump(catalog, f)
    return path
