# -- Spatial Hash Table for Neighbor Search -- #

'''
Rebuildable spatial hash for O(N) neighbor search in SPH.

Divides space into uniform cells of size equal to the smoothing length
and maps every cell to a hash bucket holding the ids of the particles
inside it. A neighbor query only visits the 9 (2D) or 27 (3D) cells
around the query cell.

The table owns the particle set. Buckets store particle ids, never
positions or references, so a rebuild can never leave a bucket pointing
at moved memory. After positions change the table is stale until
update() has run; querying a stale table is a programming error and
fails immediately.

Invariant: every particle id is in exactly one bucket, and that bucket
is hash(current position) after every update().

References:
-----------
Teschner et al. (2003) -- Optimized Spatial Hashing for Collision
    Detection of Deformable Objects
Ihmsen et al. (2011) -- Parallel Neighbor-Search for SPH
'''

from __future__ import annotations

import itertools

import numpy as np

from FluidSim.sph.kernels import SphKernel
from FluidSim.sph.neighborhood import Neighborhood, NeighborPairs
from FluidSim.sph.particles import ParticleSet


# Large distinct primes of the Teschner hash
P1: int = 73856093
P2: int = 19349663
P3: int = 83492791

# Hashes are unsigned 32-bit values
HASH_MASK: int = 0xFFFFFFFF


class SpatialHashTable:
    '''
    Uniform-grid spatial hash mapping cell hash -> set of particle ids.

    Collisions between distinct cells are accepted; neighbor queries
    filter candidates by distance, which resolves them.

    Parameters:
    -----------
    particles : ParticleSet
        Particle set to own (FluidParticles or BoundaryParticles)
    kernel : SphKernel
        Kernel used for neighborhood gradients; its smoothing length
        is the cell size
    '''

    def __init__(self, particles: ParticleSet, kernel: SphKernel) -> None:
        self._kernel = kernel
        self._cellSize = kernel.smoothingLength
        self._dimensions = kernel.dimensions
        self._stencil = np.array(
            list(itertools.product((-1, 0, 1), repeat=self._dimensions)),
            dtype=np.int64,
        )

        self._particles: ParticleSet = particles
        self._cellHashes = np.zeros(0, dtype=np.int64)
        self._buckets: dict[int, set[int]] = {}
        self._stale = False

        self.insertParticles(particles)

    ######################################################################
    # -- Hashing -- #
    ######################################################################

    def _cellsOf(self, positions: np.ndarray) -> np.ndarray:
        '''Integer cell coordinates padded to 3 components, shape (N, 3).'''
        cells = np.floor(np.atleast_2d(positions) / self._cellSize).astype(np.int64)
        if cells.shape[1] < 3:
            padding = np.zeros((cells.shape[0], 3 - cells.shape[1]), dtype=np.int64)
            cells = np.hstack([cells, padding])
        return cells

    @staticmethod
    def _hashCells(cells: np.ndarray) -> np.ndarray:
        '''Teschner hash of integer cell coordinates, shape (N,).'''
        return ((cells[:, 0] * P1) ^ (cells[:, 1] * P2) ^ (cells[:, 2] * P3)) & HASH_MASK

    def hash(self, position: np.ndarray) -> int:
        '''
        Hash of the cell containing a position.

        Parameters:
        -----------
        position : np.ndarray
            Query position [m], shape (dim,)

        Returns:
        --------
        int : Unsigned 32-bit cell hash
        '''
        return int(self._hashCells(self._cellsOf(position))[0])

    def hashAll(self, positions: np.ndarray) -> np.ndarray:
        '''Cell hashes of many positions at once, shape (N,).'''
        if len(positions) == 0:
            return np.zeros(0, dtype=np.int64)
        return self._hashCells(self._cellsOf(positions))

    ######################################################################
    # -- Construction and Rebuild -- #
    ######################################################################

    def insertParticles(self, particles: ParticleSet) -> None:
        '''
        Bulk-build the table from a particle set, O(N).

        Replaces any previously owned particles.

        Parameters:
        -----------
        particles : ParticleSet
            Particle set to own
        '''
        self._particles = particles
        self._cellHashes = self.hashAll(particles.positions)
        self._buckets = {}

        for particleId, cellHash in enumerate(self._cellHashes.tolist()):
            self._buckets.setdefault(cellHash, set()).add(particleId)

        self._stale = False

    def setPositions(self, positions: np.ndarray) -> None:
        '''
        Overwrite particle positions; the table is stale until update().

        Parameters:
        -----------
        positions : np.ndarray
            New positions [m], same shape as the current positions
        '''
        current = self._particles.positions
        if positions.shape != current.shape:
            raise ValueError(
                f'Position array shape {positions.shape} does not match {current.shape}'
            )
        current[:] = positions
        self._stale = True

    def update(self) -> int:
        '''
        Move every particle whose cell hash changed into its new bucket.

        Runs in two phases: first every new hash is computed and the
        changed ids are collected, then the moves are applied. No bucket
        is modified while hashes are still being read.

        Returns:
        --------
        int : Number of particles that changed bucket
        '''
        newHashes = self.hashAll(self._particles.positions)

        # Phase 1: collect diffs
        changedIds = np.nonzero(newHashes != self._cellHashes)[0]
        moves = [
            (int(i), int(self._cellHashes[i]), int(newHashes[i]))
            for i in changedIds
        ]

        # Phase 2: apply
        for particleId, oldHash, newHash in moves:
            oldBucket = self._buckets.get(oldHash)
            assert oldBucket is not None and particleId in oldBucket, (
                f'Particle {particleId} missing from its bucket {oldHash}'
            )
            oldBucket.remove(particleId)
            if not oldBucket:
                del self._buckets[oldHash]

            newBucket = self._buckets.setdefault(newHash, set())
            assert particleId not in newBucket, (
                f'Particle {particleId} already present in bucket {newHash}'
            )
            newBucket.add(particleId)

        self._cellHashes = newHashes
        self._stale = False
        return len(moves)

    def checkInvariants(self) -> None:
        '''
        Assert that every id sits in exactly one bucket, the right one.

        Raises:
        -------
        AssertionError : On a duplicated, missing, or misplaced id
        '''
        expected = self.hashAll(self._particles.positions)
        seen = np.zeros(len(self._particles), dtype=np.int64)

        for cellHash, bucket in self._buckets.items():
            for particleId in bucket:
                seen[particleId] += 1
                assert expected[particleId] == cellHash, (
                    f'Particle {particleId} is in bucket {cellHash}, '
                    f'expected {expected[particleId]}'
                )

        assert np.all(seen == 1), 'Every particle must appear in exactly one bucket'

    ######################################################################
    # -- Queries -- #
    ######################################################################

    def getNeighbors(self, particleId: int) -> np.ndarray:
        '''
        Ids in the same bucket as a particle (including itself).

        Parameters:
        -----------
        particleId : int
            Particle id

        Returns:
        --------
        np.ndarray : Sorted ids of the bucket, shape (k,)
        '''
        bucket = self._buckets.get(int(self._cellHashes[particleId]), set())
        return np.array(sorted(bucket), dtype=np.int64)

    def getByPosition(self, position: np.ndarray) -> np.ndarray:
        '''
        Ids in the bucket of the cell containing a position.

        Parameters:
        -----------
        position : np.ndarray
            Query position [m]

        Returns:
        --------
        np.ndarray : Sorted ids of the bucket, possibly empty
        '''
        bucket = self._buckets.get(self.hash(position), set())
        return np.array(sorted(bucket), dtype=np.int64)

    def _stencilCandidates(self, position: np.ndarray) -> np.ndarray:
        '''Union of the buckets of the 3^dim cells around a position.'''
        baseCell = np.floor(np.asarray(position) / self._cellSize).astype(np.int64)
        stencilHashes = set(self.hashAll((baseCell + self._stencil + 0.5) * self._cellSize).tolist())

        candidates: set[int] = set()
        for cellHash in stencilHashes:
            bucket = self._buckets.get(cellHash)
            if bucket:
                candidates.update(bucket)

        return np.fromiter(sorted(candidates), dtype=np.int64, count=len(candidates))

    def getNeighborhoodAt(
        self, position: np.ndarray, excludeId: int | None = None
    ) -> Neighborhood:
        '''
        Neighborhood of an arbitrary point.

        Gathers the 3^dim stencil of cells, keeps particles strictly
        within one smoothing length, and computes their kernel gradients.

        Parameters:
        -----------
        position : np.ndarray
            Query position [m], shape (dim,)
        excludeId : int | None
            Particle id to leave out (the query particle itself)

        Returns:
        --------
        Neighborhood : Neighbor ids and precomputed gradients
        '''
        assert not self._stale, 'Spatial hash queried after positions moved without update()'

        position = np.asarray(position, dtype=np.float64)
        candidates = self._stencilCandidates(position)
        if excludeId is not None:
            candidates = candidates[candidates != excludeId]

        displacements = position - self._particles.positions[candidates]
        distances = np.linalg.norm(displacements, axis=1)
        within = distances < self._cellSize

        neighborIds = candidates[within]
        displacements = displacements[within].reshape(-1, self._dimensions)
        distances = distances[within]

        return Neighborhood(
            particleId=-1 if excludeId is None else int(excludeId),
            neighborIds=neighborIds,
            displacements=displacements,
            distances=distances,
            gradients=self._kernel.gradientBatch(displacements, distances),
        )

    def getNeighborhood(self, particleId: int) -> Neighborhood:
        '''
        Neighborhood of an owned particle, excluding the particle itself.

        Parameters:
        -----------
        particleId : int
            Particle id

        Returns:
        --------
        Neighborhood : Neighbor ids and precomputed gradients
        '''
        return self.getNeighborhoodAt(self._particles.positions[particleId], excludeId=particleId)

    def neighborPairs(self) -> NeighborPairs:
        '''Neighborhoods of every owned particle, flattened into pairs.'''
        neighborhoods = [self.getNeighborhood(i) for i in range(len(self._particles))]
        return NeighborPairs.fromNeighborhoods(neighborhoods, self._dimensions)

    def neighborPairsAt(self, positions: np.ndarray) -> NeighborPairs:
        '''
        Neighborhoods of external query points, flattened into pairs.

        Pair k couples query point iIdx[k] with owned particle jIdx[k].
        Used for the static boundary table queried by fluid positions.

        Parameters:
        -----------
        positions : np.ndarray
            Query positions [m], shape (N, dim)

        Returns:
        --------
        NeighborPairs : Flattened pairs
        '''
        neighborhoods = [self.getNeighborhoodAt(p) for p in positions]
        return NeighborPairs.fromNeighborhoods(neighborhoods, self._dimensions)

    ######################################################################
    # -- Properties -- #
    ######################################################################

    @property
    def particles(self) -> ParticleSet:
        '''The owned particle set.'''
        return self._particles

    @property
    def cellSize(self) -> float:
        '''Cell edge length (the smoothing length) [m].'''
        return self._cellSize

    @property
    def cellHashes(self) -> np.ndarray:
        '''Stored id -> cell hash map (copy).'''
        return self._cellHashes.copy()

    @property
    def bucketCount(self) -> int:
        '''Number of non-empty buckets.'''
        return len(self._buckets)

    @property
    def isStale(self) -> bool:
        '''True when positions moved since the last update().'''
        return self._stale

    def bucket(self, cellHash: int) -> set[int]:
        '''Copy of the bucket stored under a hash.'''
        return set(self._buckets.get(cellHash, set()))
