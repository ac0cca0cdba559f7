# test_git_exporter.py
import os
import shutil
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from changeset_builder import ChangesetBuilder
from data_sources.memory import MemorySourceRepository
from exceptions import ExportError
from git_exporter import GitExporter, sanitize_tag_name
from models import HistoryEntry, TreeOperation
from revision_analyzer import RevisionAnalyzer
from work_queue import RunOutcome, WorkQueue
from writers.base import CommitWriter

T0 = datetime(2009, 1, 1, 9, 0, 0)


def entry(action, seconds, user="alice", comment="", version=1, **kwargs):
    return HistoryEntry(
        action=action,
        timestamp=T0 + timedelta(seconds=seconds),
        user=user,
        comment=comment,
        version=version,
        **kwargs,
    )


class RecordingWriter(CommitWriter):
    """在内存中模拟目标仓库的提交写入器"""

    def __init__(self, fail_on=(), fail_commit=False):
        self.fail_on = set(fail_on)
        self.fail_commit = fail_commit
        self.encoding: Optional[str] = "unset"
        self.files: Dict[str, bytes] = {}
        self.pending: List[tuple] = []
        self.commits: List[dict] = []
        self.tags: List[tuple] = []
        self.discarded = 0
        self.closed = False

    def _check(self, path):
        if path in self.fail_on:
            raise OSError(f"cannot update {path}")

    def set_commit_encoding(self, encoding):
        self.encoding = encoding

    def write_file(self, path, data):
        self._check(path)
        self.files[path] = data
        self.pending.append(("write", path))

    def delete(self, path):
        self._check(path)
        removed = [p for p in self.files if p == path or p.startswith(path + "/")]
        if not removed:
            raise FileNotFoundError(path)
        for p in removed:
            del self.files[p]
        self.pending.append(("delete", path))

    def rename(self, old_path, new_path):
        self._check(old_path)
        moved = [p for p in self.files if p == old_path or p.startswith(old_path + "/")]
        if not moved:
            raise FileNotFoundError(old_path)
        for p in moved:
            self.files[new_path + p[len(old_path):]] = self.files.pop(p)
        self.pending.append(("rename", old_path, new_path))

    def commit(self, author_name, author_email, when, message, parent):
        if self.fail_commit:
            raise OSError("object store is read-only")
        commit_id = f"c{len(self.commits) + 1:07d}"
        self.commits.append(
            {
                "id": commit_id,
                "author": (author_name, author_email),
                "when": when,
                "message": message,
                "parent": parent,
                "ops": list(self.pending),
                "files": dict(self.files),
            }
        )
        self.pending = []
        return commit_id

    def tag(self, name, commit_id, annotated, tagger_name="", tagger_email="",
            when=None, message=""):
        self.tags.append((name, commit_id, annotated, message))

    def discard(self):
        self.files = dict(self.commits[-1]["files"]) if self.commits else {}
        self.pending = []
        self.discarded += 1

    def close(self):
        self.closed = True


class AbortAfter:
    """第 n 次检查之后报告取消的工作队列替身"""

    def __init__(self, n):
        self.n = n
        self.checks = 0

    @property
    def is_aborting(self):
        self.checks += 1
        return self.checks > self.n

    def set_progress(self, current, maximum=None):
        pass

    def set_status(self, status):
        pass


def make_source():
    source = MemorySourceRepository()
    source.add_project("$/Project", history=[entry("add", 0)])
    source.add_file(
        "$/Project/src/main.c",
        history=[
            entry("add", 10, comment="initial import"),
            entry("edit", 2000, comment="fix crash", version=2),
        ],
        contents={1: b"v1", 2: b"v2"},
    )
    source.add_file(
        "$/Project/old.txt",
        history=[entry("add", 11, comment="initial import"), entry("delete", 4000, user="bob")],
        contents={1: b"old"},
    )
    source.add_file(
        "$/Project/readme.txt",
        history=[entry("add", 12, comment="initial import")],
        contents={1: b"readme"},
    )
    return source


def run_pipeline(source, root="$/Project", **exporter_options):
    """分析 -> 构建，返回 (revisions, changesets, exporter)"""
    analyzer = RevisionAnalyzer(None, source)
    analyzer.add_root(source.get_project(root))
    analyzer.run()
    builder = ChangesetBuilder(
        any_comment_threshold=timedelta(seconds=30),
        same_comment_threshold=timedelta(seconds=600),
    )
    changesets = builder.build(analyzer.revisions)
    exporter_options.setdefault("root_paths", [root])
    exporter = GitExporter(exporter_options.pop("work_queue", None), source, **exporter_options)
    return analyzer.revisions, changesets, exporter


class TestGitExporter(unittest.TestCase):

    def setUp(self):
        self.source = make_source()

    def test_one_commit_per_changeset(self):
        revisions, changesets, exporter = run_pipeline(self.source)
        writer = RecordingWriter()

        commits = exporter.export(changesets, revisions, writer)

        self.assertEqual(len(changesets), 3)
        self.assertEqual(len(commits), 3)
        self.assertEqual([c["parent"] for c in writer.commits], [None, "c0000001", "c0000002"])
        self.assertEqual(
            writer.commits[0]["ops"],
            [("write", "src/main.c"), ("write", "old.txt"), ("write", "readme.txt")],
        )
        self.assertEqual(writer.commits[1]["ops"], [("write", "src/main.c")])
        self.assertEqual(writer.commits[2]["ops"], [("delete", "old.txt")])
        self.assertEqual(writer.files, {"src/main.c": b"v2", "readme.txt": b"readme"})
        self.assertEqual(exporter.last_commit_id, "c0000003")

    def test_commit_identity_and_timestamp(self):
        revisions, changesets, exporter = run_pipeline(self.source)
        writer = RecordingWriter()
        exporter.export(changesets, revisions, writer)

        first = writer.commits[0]
        self.assertEqual(first["author"], ("alice", "alice@localhost"))
        self.assertEqual(first["message"], "initial import")
        # 提交时间取变更集中最后一个修订
        self.assertEqual(first["when"], T0 + timedelta(seconds=12))
        self.assertEqual(writer.commits[2]["author"], ("bob", "bob@localhost"))

    def test_email_synthesis(self):
        exporter = GitExporter(None, self.source)
        self.assertEqual(exporter.get_email("John Smith"), "john.smith@localhost")
        exporter.email_domain = "example.com"
        self.assertEqual(exporter.get_email("Alice"), "alice@example.com")

    def test_default_comment_for_empty_changeset_comment(self):
        revisions, changesets, exporter = run_pipeline(
            self.source, default_comment="(no comment)"
        )
        writer = RecordingWriter()
        exporter.export(changesets, revisions, writer)
        self.assertEqual(writer.commits[2]["message"], "(no comment)")

    def test_path_mapping(self):
        revisions, changesets, exporter = run_pipeline(self.source)
        exporter.add_path_mapping(r"^src/", "source/")
        writer = RecordingWriter()
        exporter.export(changesets, revisions, writer)
        self.assertIn("source/main.c", writer.files)
        self.assertNotIn("src/main.c", writer.files)

    def test_target_path_rules(self):
        exporter = GitExporter(None, self.source, root_paths=["$/Project"])
        self.assertIsNone(exporter.get_target_path("$/Project"))
        self.assertEqual(exporter.get_target_path("$/project/Src/a.c"), "Src/a.c")
        self.assertEqual(exporter.get_target_path("$/Other/b.c"), "Other/b.c")

        exporter.add_path_mapping(r"^Src/.*", "")
        with self.assertLogs("git_exporter", level="WARNING"):
            self.assertIsNone(exporter.get_target_path("$/Project/Src/a.c"))

    def test_project_root_is_derived_when_not_given(self):
        revisions, changesets, exporter = run_pipeline(self.source)
        exporter.root_paths = []
        writer = RecordingWriter()
        exporter.export(changesets, revisions, writer)
        self.assertEqual(exporter.root_paths, ["$/Project"])
        self.assertIn("src/main.c", writer.files)

    def test_rename(self):
        source = MemorySourceRepository()
        source.add_project("$/Project")
        source.add_file(
            "$/Project/new.txt",
            history=[entry("add", 0, comment="add"), entry("rename", 100, from_path="old.txt")],
            contents={1: b"data"},
        )
        revisions, changesets, exporter = run_pipeline(source)
        writer = RecordingWriter()
        exporter.export(changesets, revisions, writer)

        self.assertEqual(writer.commits[0]["ops"], [("write", "old.txt")])
        self.assertEqual(writer.commits[1]["ops"], [("rename", "old.txt", "new.txt")])
        self.assertEqual(
            exporter.commits[1].operations,
            (TreeOperation("rename", "new.txt", "old.txt"),),
        )
        self.assertEqual(writer.files, {"new.txt": b"data"})

    def test_transcoding_enabled_keeps_message(self):
        source = MemorySourceRepository()
        source.add_file(
            "$/Project/a.txt",
            history=[entry("add", 0, comment="café 日本")],
            contents={1: b"a"},
        )
        revisions, changesets, exporter = run_pipeline(source)
        writer = RecordingWriter()
        exporter.export(changesets, revisions, writer)

        self.assertIsNone(writer.encoding)
        self.assertEqual(writer.commits[0]["message"], "café 日本")

    def test_source_encoding_replaces_unrepresentable_characters(self):
        source = MemorySourceRepository()
        source.add_file(
            "$/Project/a.txt",
            history=[entry("add", 0, comment="café 日本")],
            contents={1: b"a"},
        )
        revisions, changesets, exporter = run_pipeline(source, commit_encoding="cp1252")
        writer = RecordingWriter()
        exporter.export(changesets, revisions, writer)

        self.assertEqual(writer.encoding, "cp1252")
        self.assertEqual(writer.commits[0]["message"], "café ??")

    def test_ignore_errors_skips_failing_operation(self):
        revisions, changesets, exporter = run_pipeline(self.source, ignore_errors=True)
        writer = RecordingWriter(fail_on={"readme.txt"})

        with self.assertLogs("git_exporter", level="WARNING"):
            exporter.export(changesets, revisions, writer)

        self.assertEqual(len(writer.commits), 3)
        self.assertEqual(
            writer.commits[0]["ops"], [("write", "src/main.c"), ("write", "old.txt")]
        )
        self.assertEqual(exporter.error_count, 1)

    def test_failure_on_third_of_five_changesets_is_fatal(self):
        source = MemorySourceRepository()
        for index in range(1, 6):
            source.add_file(
                f"$/Project/f{index}.txt",
                history=[entry("add", index * 1000, comment=f"change {index}")],
                contents={1: f"file {index}".encode()},
            )
        revisions, changesets, exporter = run_pipeline(source)
        writer = RecordingWriter(fail_on={"f3.txt"})

        self.assertEqual(len(changesets), 5)
        with self.assertRaises(ExportError) as cm:
            exporter.export(changesets, revisions, writer)

        self.assertEqual(cm.exception.changeset_index, 2)
        self.assertEqual(len(writer.commits), 2)
        self.assertEqual(exporter.commit_count, 2)
        self.assertEqual(set(writer.files), {"f1.txt", "f2.txt"})

    def test_fatal_failure_discards_partial_changeset(self):
        source = MemorySourceRepository()
        for index, seconds in enumerate((1000, 2000, 3000, 3001), 1):
            source.add_file(
                f"$/Project/f{index}.txt",
                history=[entry("add", seconds)],
                contents={1: b"x"},
            )
        revisions, changesets, exporter = run_pipeline(source)
        writer = RecordingWriter(fail_on={"f4.txt"})

        self.assertEqual(len(changesets), 3)
        with self.assertRaises(ExportError) as cm:
            exporter.export(changesets, revisions, writer)

        self.assertEqual(cm.exception.changeset_index, 2)
        self.assertEqual(writer.discarded, 1)
        # f3.txt 已写入但未提交，被丢弃
        self.assertEqual(writer.pending, [])
        self.assertEqual(set(writer.files), {"f1.txt", "f2.txt"})
        self.assertEqual(writer.files, writer.commits[-1]["files"])

    def test_renamed_parent_project_is_exported_in_order(self):
        source = MemorySourceRepository()
        source.add_project("$/Project", history=[entry("add", 0)])
        source.add_project(
            "$/Project/new",
            history=[entry("add", 1), entry("rename", 1000, from_path="old")],
        )
        source.add_file(
            "$/Project/new/a.txt",
            history=[entry("add", 5), entry("edit", 2000, version=2)],
            contents={1: b"v1", 2: b"v2"},
        )
        revisions, changesets, exporter = run_pipeline(source)
        writer = RecordingWriter()

        exporter.export(changesets, revisions, writer)

        self.assertEqual(
            [c["ops"] for c in writer.commits],
            [
                [("write", "old/a.txt")],
                [("rename", "old", "new")],
                [("write", "new/a.txt")],
            ],
        )
        self.assertEqual(writer.files, {"new/a.txt": b"v2"})
        self.assertEqual(exporter.error_count, 0)

    def test_commit_failure_is_fatal_even_when_ignoring_errors(self):
        revisions, changesets, exporter = run_pipeline(self.source, ignore_errors=True)
        with self.assertRaises(ExportError):
            exporter.export(changesets, revisions, RecordingWriter(fail_commit=True))
        self.assertEqual(exporter.commit_count, 0)

    def test_cancellation_keeps_only_completed_commits(self):
        source = MemorySourceRepository()
        for index in range(1, 6):
            source.add_file(
                f"$/Project/f{index}.txt",
                history=[entry("add", index * 1000)],
                contents={1: b"x"},
            )
        revisions, changesets, exporter = run_pipeline(source, work_queue=AbortAfter(2))
        writer = RecordingWriter()

        with self.assertLogs("git_exporter", level="WARNING"):
            exporter.export(changesets, revisions, writer)

        self.assertEqual(len(writer.commits), 2)
        self.assertEqual(writer.pending, [])
        self.assertEqual(set(writer.files), {"f1.txt", "f2.txt"})

    def test_export_is_idempotent(self):
        def export_once():
            revisions, changesets, exporter = run_pipeline(make_source())
            exporter.export(changesets, revisions, RecordingWriter())
            return [
                (c.author_name, c.author_email, c.timestamp, c.message, c.operations, c.tags)
                for c in exporter.commits
            ]

        self.assertEqual(export_once(), export_once())

    def test_label_becomes_lightweight_tag_on_last_commit(self):
        self.source.add_project(
            "$/Project",
            history=[entry("add", 0), entry("label", 5000, user="carol", label="Release 1.0")],
        )
        revisions, changesets, exporter = run_pipeline(self.source)
        writer = RecordingWriter()
        exporter.export(changesets, revisions, writer)

        self.assertEqual(len(writer.commits), 3)
        self.assertEqual(writer.tags, [("Release_1.0", "c0000003", False, "Release 1.0")])
        self.assertEqual(exporter.commits[-1].tags, ("Release_1.0",))

    def test_label_with_comment_is_annotated(self):
        self.source.add_project(
            "$/Project",
            history=[
                entry("add", 0),
                entry("label", 5000, comment="first release", label="v1"),
                entry("label", 9000, label="v1"),
            ],
        )
        revisions, changesets, exporter = run_pipeline(self.source)
        writer = RecordingWriter()
        exporter.export(changesets, revisions, writer)

        self.assertEqual(
            writer.tags,
            [
                ("v1", "c0000003", True, "first release"),
                ("v1_2", "c0000003", False, "v1"),
            ],
        )

    def test_force_annotated_tags(self):
        self.source.add_project(
            "$/Project", history=[entry("add", 0), entry("label", 5000, label="v2")]
        )
        revisions, changesets, exporter = run_pipeline(
            self.source, force_annotated_tags=True
        )
        writer = RecordingWriter()
        exporter.export(changesets, revisions, writer)
        self.assertTrue(writer.tags[0][2])

    def test_label_before_first_commit_is_skipped(self):
        source = MemorySourceRepository()
        source.add_project("$/Project", history=[entry("label", 0, label="empty")])
        revisions, changesets, exporter = run_pipeline(source)
        writer = RecordingWriter()

        with self.assertLogs("git_exporter", level="WARNING"):
            exporter.export(changesets, revisions, writer)

        self.assertEqual(writer.tags, [])
        self.assertEqual(writer.commits, [])

    def test_sanitize_tag_name(self):
        self.assertEqual(sanitize_tag_name("Release 1.0"), "Release_1.0")
        self.assertEqual(sanitize_tag_name("v1..2"), "v1.2")
        self.assertEqual(sanitize_tag_name("build~3^"), "build_3_")
        self.assertEqual(sanitize_tag_name("final.lock"), "final")
        self.assertEqual(sanitize_tag_name(".hidden"), "hidden")
        self.assertEqual(sanitize_tag_name("   "), "label")

    def test_export_to_git_runs_on_work_queue(self):
        queue = WorkQueue()
        analyzer = RevisionAnalyzer(queue, self.source)
        analyzer.add_root(self.source.get_project("$/Project"))
        builder = ChangesetBuilder(queue)
        exporter = GitExporter(queue, self.source, root_paths=["$/Project"])
        writer = RecordingWriter()

        with queue.batch():
            analyzer.analyze()
            builder.build_changesets(analyzer)
            exporter.export_to_git(lambda: writer, analyzer, builder)

        self.assertTrue(queue.wait_idle(5.0))
        self.assertEqual(queue.last_outcome, RunOutcome.COMPLETED)
        self.assertEqual(len(writer.commits), 3)
        self.assertTrue(writer.closed)
        self.assertEqual(queue.progress, (3, 3))


@unittest.skipUnless(shutil.which("git"), "git executable not available")
class TestGitCommitWriter(unittest.TestCase):
    """使用真实 Git 仓库的导出测试"""

    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp(prefix="vss_migrate_")
        self.repo_path = os.path.join(self.tmp_dir, "repo")

    def tearDown(self):
        shutil.rmtree(self.tmp_dir, ignore_errors=True)

    def _export(self, source, **options):
        from writers.git_writer import GitCommitWriter

        revisions, changesets, exporter = run_pipeline(source, **options)
        writer = GitCommitWriter(self.repo_path)
        try:
            exporter.export(changesets, revisions, writer)
        finally:
            writer.close()
        return exporter

    def test_history_is_written_to_git(self):
        import git

        source = make_source()
        source.add_project(
            "$/Project",
            history=[entry("add", 0), entry("label", 5000, comment="ship it", label="v1.0")],
        )
        exporter = self._export(source)

        repo = git.Repo(self.repo_path)
        try:
            commits = list(repo.iter_commits("HEAD"))
            self.assertEqual(len(commits), 3)
            head = commits[0]
            self.assertEqual(head.hexsha, exporter.last_commit_id)
            self.assertEqual(head.author.email, "bob@localhost")
            self.assertEqual(
                head.authored_date,
                int((T0 + timedelta(seconds=4000)).replace(tzinfo=timezone.utc).timestamp()),
            )
            self.assertEqual(commits[-1].message.strip(), "initial import")
            self.assertEqual(len(commits[-1].parents), 0)

            tree_paths = {blob.path for blob in head.tree.traverse() if blob.type == "blob"}
            self.assertEqual(tree_paths, {"src/main.c", "readme.txt"})
            self.assertEqual(
                (head.tree / "src" / "main.c").data_stream.read(), b"v2"
            )

            tag = repo.tags["v1.0"]
            self.assertEqual(tag.commit.hexsha, head.hexsha)
            self.assertIsNotNone(tag.tag)
            self.assertEqual(tag.tag.message.strip(), "ship it")
        finally:
            repo.close()

    def test_commit_encoding_is_recorded(self):
        import git

        source = MemorySourceRepository()
        source.add_file(
            "$/Project/a.txt", history=[entry("add", 0, comment="café")], contents={1: b"a"}
        )
        self._export(source, commit_encoding="cp1252")

        repo = git.Repo(self.repo_path)
        try:
            head = repo.head.commit
            self.assertEqual(head.encoding.lower(), "cp1252")
            self.assertEqual(head.message.strip(), "café")
        finally:
            repo.close()

    def test_discard_restores_last_commit(self):
        import git
        from writers.git_writer import GitCommitWriter

        writer = GitCommitWriter(self.repo_path)
        try:
            writer.write_file("keep.txt", b"kept")
            writer.commit("alice", "alice@localhost", T0, "first", None)
            writer.write_file("sub/extra.txt", b"extra")
            writer.delete("keep.txt")

            writer.discard()
        finally:
            writer.close()

        self.assertTrue(os.path.isfile(os.path.join(self.repo_path, "keep.txt")))
        self.assertFalse(os.path.exists(os.path.join(self.repo_path, "sub")))
        repo = git.Repo(self.repo_path)
        try:
            self.assertFalse(repo.is_dirty(untracked_files=True))
        finally:
            repo.close()

    def test_discard_before_first_commit_empties_index(self):
        import git
        from writers.git_writer import GitCommitWriter

        writer = GitCommitWriter(self.repo_path)
        try:
            writer.write_file("a.txt", b"a")
            writer.discard()
        finally:
            writer.close()

        self.assertFalse(os.path.exists(os.path.join(self.repo_path, "a.txt")))
        repo = git.Repo(self.repo_path)
        try:
            self.assertEqual(len(repo.index.entries), 0)
        finally:
            repo.close()

    def test_rejects_paths_outside_working_tree(self):
        from writers.git_writer import GitCommitWriter

        writer = GitCommitWriter(self.repo_path)
        try:
            for bad in ("../escape.txt", "/abs.txt", ".git/config"):
                with self.assertRaises(ValueError):
                    writer.write_file(bad, b"x")
        finally:
            writer.close()


if __name__ == "__main__":
    unittest.main()
