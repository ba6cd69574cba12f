import os
import tempfile
import unittest
import numpy as np
import pandas as pd
from data.table import ColumnDomain, ColumnType, DataTable
from preprocessing.outliers import (
    DomainUpdater,
    GroupKey,
    GroupKeyIndex,
    IntervalModel,
    InvalidSettingsError,
    MemberCounter,
    TreatmentInternals,
)
from preprocessing.outliers.serialization import decode_key, encode_key


class TestMemberCounter(unittest.TestCase):

    def test_increment_and_get(self):
        counter = MemberCounter()
        counter.increment('v', ('a',))
        counter.increment('v', ('a',))
        counter.increment('w', ('b',), 3)

        self.assertEqual(counter.get('v', ('a',)), 2)
        self.assertEqual(counter.get('w', ('b',)), 3)
        self.assertEqual(counter.get('v', ('b',)), 0)
        self.assertEqual(counter.total(), 5)
        self.assertEqual(counter.total('v'), 2)

    def test_counts_never_decrease(self):
        with self.assertRaises(ValueError):
            MemberCounter().increment('v', (), -1)

    def test_group_keys_first_seen_order(self):
        counter = MemberCounter()
        for key in [('c',), ('a',), ('c',), ('b',)]:
            counter.increment('v', key)
        self.assertEqual(counter.group_keys(), [('c',), ('a',), ('b',)])

    def test_merge_is_order_independent(self):
        first, second, third = MemberCounter(), MemberCounter(), MemberCounter()
        first.increment('v', ('a',), 2)
        second.increment('v', ('a',), 1)
        second.increment('v', ('b',), 4)
        third.increment('w', ('a',), 5)

        merged = MemberCounter.merge([first, second, third])
        reversed_merge = MemberCounter.merge([third, second, first])

        self.assertEqual(merged, reversed_merge)
        self.assertEqual(merged.get('v', ('a',)), 3)
        self.assertEqual(merged.get('v', ('b',)), 4)
        self.assertEqual(merged.get('w', ('a',)), 5)
        # inputs untouched
        self.assertEqual(first.get('v', ('a',)), 2)

    def test_merge_of_empty_counters(self):
        merged = MemberCounter.merge([MemberCounter(), MemberCounter()])
        self.assertTrue(merged.is_empty())
        self.assertEqual(merged.total(), 0)


class TestIntervalModel(unittest.TestCase):

    def setUp(self):
        self.model = IntervalModel(
            ['site', 'year'],
            ['value', 'weight'],
            {'site': ColumnType.STRING, 'year': ColumnType.LONG}
        )
        self.model.add_interval(('a', 2020), 'value', -1.0, 7.0)
        self.model.add_interval(('a', 2020), 'weight', 0.5, 2.5)
        self.model.add_interval((None, 2021), 'value', 3.0, 3.0)

    def test_lookup(self):
        intervals = self.model.get_group_intervals(('a', 2020))
        self.assertEqual(intervals['value'], (-1.0, 7.0))
        self.assertIsNone(self.model.get_group_intervals(('b', 2020)))
        self.assertIsNone(self.model.get_interval((None, 2021), 'weight'))
        self.assertIn(('a', 2020), self.model)
        self.assertEqual(len(self.model), 2)

    def test_invalid_intervals(self):
        with self.assertRaises(ValueError):
            self.model.add_interval(('a', 2020), 'value', 5.0, 1.0)
        with self.assertRaises(ValueError):
            self.model.add_interval(('a', 2020), 'value', np.nan, 1.0)
        with self.assertRaises(ValueError):
            self.model.add_interval(('a',), 'value', 0.0, 1.0)
        with self.assertRaises(ValueError):
            self.model.add_interval(('a', 2020), 'other', 0.0, 1.0)

    def test_group_intervals_are_read_only(self):
        intervals = self.model.get_group_intervals(('a', 2020))
        with self.assertRaises(TypeError):
            intervals['value'] = (0.0, 1.0)

    def test_restrict_to(self):
        restricted = self.model.restrict_to(['weight'])
        self.assertEqual(restricted.outlier_columns, ['weight'])
        self.assertEqual(restricted.group_keys(), [('a', 2020)])
        self.assertEqual(restricted.group_columns, self.model.group_columns)

    def test_to_dataframe(self):
        df = self.model.to_dataframe()
        self.assertEqual(
            list(df.columns),
            ['site', 'year', 'Outlier column', 'Lower bound', 'Upper bound']
        )
        self.assertEqual(len(df), 3)

    def test_serialization_round_trip(self):
        restored = IntervalModel.from_bytes(self.model.to_bytes())
        self.assertEqual(restored, self.model)
        self.assertEqual(restored.group_keys(), self.model.group_keys())

        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, 'model.npz')
            self.model.save(path)
            self.assertEqual(IntervalModel.load(path), self.model)

    def test_invalid_bytes(self):
        with self.assertRaises(ValueError):
            IntervalModel.from_bytes(b'not a model')

    def test_key_encoding_keeps_types(self):
        key = GroupKey((True, 1, 2.5, 'x', None, pd.Timestamp('2024-01-02')))
        decoded = decode_key(encode_key(key))
        self.assertEqual(decoded, key)
        self.assertIsInstance(decoded[0], bool)
        self.assertIsInstance(decoded[1], int)
        self.assertIsInstance(decoded[5], pd.Timestamp)


class TestGrouping(unittest.TestCase):

    def test_global_group(self):
        table = DataTable(pd.DataFrame({'v': [1.0, 2.0]}))
        index = GroupKeyIndex(table.spec, [])
        keys = [index.key_for(row) for row in table]
        self.assertEqual(keys, [(), ()])
        self.assertTrue(keys[0].is_global)

    def test_keys_follow_group_column_order(self):
        table = DataTable(pd.DataFrame({'a': ['x', 'y'], 'b': [1, 2], 'v': [1.0, 2.0]}))
        index = GroupKeyIndex(table.spec, ['b', 'a'])
        self.assertEqual([index.key_for(row) for row in table], [(1, 'x'), (2, 'y')])

    def test_absent_group_column(self):
        table = DataTable(pd.DataFrame({'v': [1.0]}))
        with self.assertRaises(InvalidSettingsError):
            GroupKeyIndex(table.spec, ['absent'])


class TestTreatmentInternals(unittest.TestCase):

    def setUp(self):
        self.model = IntervalModel(['g'], ['v'], {'g': ColumnType.STRING})
        self.model.add_interval(('a',), 'v', 0.0, 10.0)

    def _internals(self, members, outliers, warnings):
        internals = TreatmentInternals(self.model)
        internals.member_counter.increment('v', ('a',), members)
        internals.outlier_counter.increment('v', ('a',), outliers)
        for message in warnings:
            internals.warning(message)
        return internals

    def test_merge_sums_counts_and_unites_warnings(self):
        first = self._internals(3, 1, ['w1'])
        second = self._internals(4, 2, ['w2', 'w1'])
        merged = TreatmentInternals.merge([first, second])

        self.assertEqual(merged.member_counter.get('v', ('a',)), 7)
        self.assertEqual(merged.outlier_counter.get('v', ('a',)), 3)
        self.assertEqual(merged.warnings, ['w1', 'w2'])

        with self.assertRaises(ValueError):
            TreatmentInternals.merge([])

    def test_round_trip_and_sections(self):
        internals = self._internals(5, 2, ['careful'])
        internals.missing_groups_counter.increment('v', ('z',))
        blob = internals.to_bytes()

        restored = TreatmentInternals.from_bytes(blob)
        self.assertEqual(restored.model, self.model)
        self.assertEqual(restored.member_counter, internals.member_counter)
        self.assertEqual(restored.outlier_counter, internals.outlier_counter)
        self.assertEqual(restored.missing_groups_counter, internals.missing_groups_counter)
        self.assertEqual(restored.warnings, ['careful'])

        self.assertEqual(TreatmentInternals.load_section(blob, 'warnings'), ['careful'])
        outliers = TreatmentInternals.load_section(blob, 'outlier_counter')
        self.assertEqual(outliers.get('v', ('a',)), 2)
        with self.assertRaises(ValueError):
            TreatmentInternals.load_section(blob, 'nope')

    def test_write_summary(self):
        internals = self._internals(5, 2, [])
        internals.missing_groups_counter.increment('v', ('b',), 3)
        summary = internals.write_summary().df

        self.assertEqual(
            list(summary.columns),
            ['Outlier column', 'g', 'Member count', 'Outlier count', 'Lower bound', 'Upper bound']
        )
        self.assertEqual(len(summary), 2)
        self.assertEqual(summary['Member count'].tolist(), [5, 3])
        self.assertEqual(summary['Outlier count'].tolist(), [2, 0])
        self.assertTrue(np.isnan(summary['Lower bound'].iloc[1]))


class TestDomainUpdater(unittest.TestCase):

    def test_double_and_integer_domains(self):
        updater = DomainUpdater()
        for value in [1.5, 7.2, 3.0]:
            updater.update('d', value)
            updater.update('i', value)

        domains = updater.domains({'d': ColumnType.DOUBLE, 'i': ColumnType.LONG})
        self.assertEqual(domains['d'], ColumnDomain(1.5, 7.2))
        self.assertEqual(domains['i'], ColumnDomain(1, 8))

    def test_merge(self):
        first, second = DomainUpdater(), DomainUpdater()
        first.update('v', 2.0)
        second.update('v', -1.0)
        second.update('v', 9.0)
        first.merge(second)
        self.assertEqual(first.bounds('v'), (-1.0, 9.0))

    def test_apply(self):
        table = DataTable(pd.DataFrame({'v': [1.0, 2.0], 'w': [0.0, 1.0]}))
        updater = DomainUpdater()
        updater.update('v', 1.0)
        updater.update('v', 2.0)
        updater.update('w', 0.0)

        updated = updater.apply(table, ['v'])
        self.assertEqual(updated.spec.get_column_spec('v').domain, ColumnDomain(1.0, 2.0))
        self.assertIsNone(updated.spec.get_column_spec('w').domain)


if __name__ == '__main__':
    unittest.main()
