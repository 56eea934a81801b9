# -- Particle Neighborhoods -- #

'''
Per-particle neighborhood snapshots and their flattened pair form.

A Neighborhood holds the ids of every particle within one smoothing
length of a query point together with one kernel gradient per neighbor.
The gradient is computed once when the neighborhood is built and reused
by every formula of the same solver sub-step.

Neighborhoods are only valid until the next SpatialHashTable.update():
ids stay stable across a rebuild but the displacements and gradients
do not. They are never cached across steps.

NeighborPairs flattens a list of neighborhoods (indexed by the query
particle id) into parallel pair arrays, so that solver passes can be
written as vectorized NumPy expressions with np.add.at scatter sums.
'''

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass
class Neighborhood:
    '''
    Neighbors of one query point.

    Parameters:
    -----------
    particleId : int
        Id of the query particle, or -1 for a query by position
    neighborIds : np.ndarray
        Ids of neighbors strictly within the smoothing length, shape (k,)
    displacements : np.ndarray
        x_query - x_neighbor for each neighbor [m], shape (k, dim)
    distances : np.ndarray
        |displacement| for each neighbor [m], shape (k,)
    gradients : np.ndarray
        Kernel gradient grad_W(x_query - x_neighbor), shape (k, dim)
    '''

    particleId: int
    neighborIds: np.ndarray
    displacements: np.ndarray
    distances: np.ndarray
    gradients: np.ndarray

    def __len__(self) -> int:
        return len(self.neighborIds)

    @property
    def gradientSum(self) -> np.ndarray:
        '''Sum of kernel gradients over all neighbors.'''
        return np.sum(self.gradients, axis=0)


@dataclass
class NeighborPairs:
    '''
    Neighborhoods flattened into parallel pair arrays.

    Pair k couples query particle iIdx[k] with neighbor jIdx[k]. The
    neighbor may belong to another particle set (boundary pairs).
    Each unordered fluid pair appears twice, once from each side.

    Parameters:
    -----------
    iIdx : np.ndarray
        Query particle ids, shape (P,)
    jIdx : np.ndarray
        Neighbor ids, shape (P,)
    displacements : np.ndarray
        x_i - x_j [m], shape (P, dim)
    distances : np.ndarray
        |x_i - x_j| [m], shape (P,)
    gradients : np.ndarray
        grad_W(x_i - x_j), shape (P, dim)
    nParticles : int
        Number of query particles
    '''

    iIdx: np.ndarray
    jIdx: np.ndarray
    displacements: np.ndarray
    distances: np.ndarray
    gradients: np.ndarray
    nParticles: int

    @classmethod
    def empty(cls, nParticles: int, dimensions: int) -> NeighborPairs:
        '''Pair list with no pairs.'''
        return cls(
            iIdx=np.array([], dtype=np.int64),
            jIdx=np.array([], dtype=np.int64),
            displacements=np.zeros((0, dimensions)),
            distances=np.zeros(0),
            gradients=np.zeros((0, dimensions)),
            nParticles=nParticles,
        )

    @classmethod
    def fromNeighborhoods(
        cls, neighborhoods: list[Neighborhood], dimensions: int
    ) -> NeighborPairs:
        '''
        Flatten neighborhoods, where neighborhoods[i] belongs to particle i.

        Parameters:
        -----------
        neighborhoods : list[Neighborhood]
            One neighborhood per query particle, ordered by id
        dimensions : int
            Number of spatial dimensions

        Returns:
        --------
        NeighborPairs : Flattened pairs
        '''
        nParticles = len(neighborhoods)
        counts = np.array([len(n) for n in neighborhoods], dtype=np.int64)
        if counts.sum() == 0:
            return cls.empty(nParticles, dimensions)

        return cls(
            iIdx=np.repeat(np.arange(nParticles, dtype=np.int64), counts),
            jIdx=np.concatenate([n.neighborIds for n in neighborhoods]).astype(np.int64),
            displacements=np.concatenate([n.displacements for n in neighborhoods]),
            distances=np.concatenate([n.distances for n in neighborhoods]),
            gradients=np.concatenate([n.gradients for n in neighborhoods]),
            nParticles=nParticles,
        )

    @property
    def nPairs(self) -> int:
        '''Number of (directed) pairs.'''
        return len(self.iIdx)

    @property
    def neighborCounts(self) -> np.ndarray:
        '''Number of neighbors of each query particle, shape (N,).'''
        return np.bincount(self.iIdx, minlength=self.nParticles)

    def sumPerParticle(self, values: np.ndarray) -> np.ndarray:
        '''
        Scatter-add per-pair values onto their query particle.

        Parameters:
        -----------
        values : np.ndarray
            Per-pair values, shape (P,) or (P, dim)

        Returns:
        --------
        np.ndarray : Per-particle sums, shape (N,) or (N, dim)
        '''
        result = np.zeros((self.nParticles,) + values.shape[1:])
        if self.nPairs > 0:
            np.add.at(result, self.iIdx, values)
        return result
