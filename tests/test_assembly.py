"""Tests for test assembly and persistence."""
from book_tutor.assembly import assemble, delete_test, get_test, order_fresh_questions, save_test
from book_tutor.db import get_connection, init_db
from book_tutor.models import BloomCategory, Difficulty, Question, QuestionType, ReviewQueueItem

E, M, H = Difficulty.EASY, Difficulty.MEDIUM, Difficulty.HARD


def q(label, difficulty, qtype=QuestionType.MCQ, **kw):
    return Question(idea_id="idea-1", type=qtype, difficulty=difficulty,
                    bloom_category=BloomCategory.APPLY, question_text=label, **kw)


def item(difficulty, **flags):
    return ReviewQueueItem(idea_id="idea-2", idea_title="Other", book_id="book-1", book_title="Atomic Habits",
                           question_type=QuestionType.MCQ, difficulty=difficulty,
                           bloom_category=BloomCategory.RECALL, **flags)


def texts(questions):
    return [x.question_text for x in questions]


def test_fresh_order_easy_medium_hard_open_last():
    fresh = [q("H2", H, QuestionType.OPEN_ENDED), q("M1", M), q("E1", E), q("H1", H),
             q("M2", M), q("E2", E), q("M3", M), q("M4", M)]
    assert texts(order_fresh_questions(fresh)) == ["E1", "E2", "M1", "M2", "M3", "M4", "H1", "H2"]


def test_open_ended_outside_hard_bucket_keeps_position():
    fresh = [q("M-open", M, QuestionType.OPEN_ENDED), q("M1", M), q("E1", E)]
    assert texts(order_fresh_questions(fresh)) == ["E1", "M-open", "M1"]


def test_assemble_full_order():
    fresh = [q("H2", H, QuestionType.OPEN_ENDED), q("M1", M), q("E1", E), q("H1", H),
             q("M2", M), q("E2", E), q("M3", M), q("M4", M)]
    review_hard, review_easy = item(H), item(E)
    pairs = [(review_hard, q("rH1", H)), (review_easy, q("rE1", E))]
    test = assemble(fresh, pairs, "idea-1", "Compounding habits", "Atomic Habits")
    assert texts(test.questions) == ["E1", "E2", "M1", "M2", "M3", "M4", "H1", "H2", "rE1", "rH1"]
    assert [x.order_index for x in test.questions] == list(range(10))
    assert test.fresh_question_count == 8
    assert test.test_type == "mixed"
    assert test.questions[8].source_queue_item_id == review_easy.id
    assert test.questions[9].source_queue_item_id == review_hard.id
    assert all(x.source_queue_item_id is None for x in test.questions[:8])


def test_assemble_clones_with_new_ids():
    original = q("E1", E)
    test = assemble([original], [], "idea-1", "I", "B", test_type="initial")
    assert test.questions[0].id != original.id
    assert original.order_index == 0
    assert test.questions[0].question_text == "E1"


def test_review_sort_is_stable():
    pairs = [(item(M), q("a", M)), (item(E), q("b", E)), (item(M), q("c", M))]
    test = assemble([], pairs, "review:1", "Daily review", "B", test_type="review")
    assert texts(test.questions) == ["b", "a", "c"]


def test_question_source_id_wins_and_flags_merge():
    curve = item(H, is_curveball=True)
    question = q("r", H, source_queue_item_id="original-item")
    test = assemble([], [(curve, question)], "idea-1", "I", "B")
    assert test.questions[0].source_queue_item_id == "original-item"
    assert test.questions[0].is_curveball


def test_save_and_get_test(tmp_db):
    init_db(tmp_db)
    fresh = [q("E1", E, options=["a", "b"], correct_answers=[1]), q("H1", H, QuestionType.OPEN_ENDED)]
    test = assemble(fresh, [(item(M), q("r", M))], "idea-1", "Compounding habits", "Atomic Habits")
    save_test(tmp_db, test)
    loaded = get_test(tmp_db, test.id)
    assert loaded.idea_title == "Compounding habits"
    assert loaded.fresh_question_count == 2
    assert texts(loaded.questions) == ["E1", "H1", "r"]
    assert loaded.questions[0].options == ["a", "b"]
    assert loaded.questions[0].correct_answers == [1]
    assert loaded.questions[1].options is None
    assert loaded.questions[2].source_queue_item_id == test.questions[2].source_queue_item_id


def test_delete_test_removes_questions(tmp_db):
    init_db(tmp_db)
    test = save_test(tmp_db, assemble([q("E1", E)], [], "idea-1", "I", "B"))
    delete_test(tmp_db, test.id)
    assert get_test(tmp_db, test.id) is None
    conn = get_connection(tmp_db)
    assert conn.execute("SELECT COUNT(*) FROM questions").fetchone()[0] == 0
    conn.close()
