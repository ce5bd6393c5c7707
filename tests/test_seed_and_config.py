import logging

from exam_portal.models.exam import Exam
from exam_portal.models.user import User
from exam_portal.simulation.seed import seed_fixtures
from exam_portal.utils.config import Settings
from exam_portal.utils.logging import build_logging_config


def test_seed_is_idempotent():
    seed_fixtures(seed_value=1)
    seed_fixtures(seed_value=2)

    assert User.objects.count() == 4
    assert User.objects(role="admin").count() == 1
    assert Exam.objects.count() == 3
    for exam in Exam.objects:
        assert exam.is_open()
        assert 0 < exam.passing_marks <= exam.total_marks


def test_mongo_uri_variants():
    assert Settings(mongo_host="db", mongo_port=27018, mongo_db="x").mongo_uri == "mongodb://db:27018/x"
    assert Settings(mongo_url="mongodb://override/y").mongo_uri == "mongodb://override/y"
    srv = Settings(mongo_srv=True, mongo_host="cluster.example.net", mongo_user="u", mongo_password="p")
    assert srv.mongo_uri.startswith("mongodb+srv://u:p@cluster.example.net/")


def test_logging_config_adds_file_handlers_only_with_log_dir(tmp_path):
    plain = build_logging_config(level="debug", log_dir="")
    assert set(plain["handlers"]) == {"console"}
    assert plain["root"]["level"] == "DEBUG"

    with_files = build_logging_config(log_dir=str(tmp_path))
    assert set(with_files["handlers"]) == {"console", "file", "error_file"}
    assert with_files["handlers"]["error_file"]["level"] == logging.getLevelName(logging.ERROR)
