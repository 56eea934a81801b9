# -- SPH Boundary Conditions -- #

'''
Boundary wall particles and domain-face reflection.

Walls are layers of static boundary particles placed just outside a
rectangular container. They never move and take part in the density
and pressure passes only through the boundary terms of the fluid
particles next to them, which keeps the fluid from piling into a wall.

Independently of the wall particles, every fluid particle is kept inside
the simulation domain: a particle that leaves it is clamped back half a
particle radius inside the face, and its velocity is reflected with a
restitution coefficient.

The vertical axis is y in both 2D and 3D.

References:
-----------
Akinci et al. (2012) -- Versatile Rigid-Fluid Coupling for Incompressible SPH
Monaghan & Kos (1999) -- Solitary waves on a Cretan beach
'''

from __future__ import annotations

import numpy as np

from FluidSim import constants as const


VERTICAL_AXIS: int = 1


class BoundaryWalls:
    '''
    Rectangular container: wall particle generation and face reflection.

    Parameters:
    -----------
    containerMin : np.ndarray
        Lower corner of the container [m]
    containerMax : np.ndarray
        Upper corner of the container [m]
    spacing : float
        Spacing between wall particles and between layers [m]
    nLayers : int
        Number of wall layers
    openTop : bool
        If True, no wall particles on the top face
    restitution : float
        Fraction of the normal velocity kept after a reflection
    margin : float
        Distance kept between a reflected particle and the face [m]
    '''

    def __init__(
        self,
        containerMin: np.ndarray,
        containerMax: np.ndarray,
        spacing: float,
        nLayers: int = const.defaultBoundaryLayers,
        openTop: bool = False,
        restitution: float = const.restitution,
        margin: float = 0.0,
    ) -> None:
        self._containerMin = np.array(containerMin, dtype=np.float64)
        self._containerMax = np.array(containerMax, dtype=np.float64)
        self._spacing = float(spacing)
        self._nLayers = nLayers
        self._openTop = openTop
        self._restitution = restitution
        self._margin = margin

        if self._containerMin.shape != self._containerMax.shape:
            raise ValueError('containerMin and containerMax must have the same shape')
        if len(self._containerMin) not in (2, 3):
            raise ValueError(f'Container must be 2D or 3D, got {len(self._containerMin)} components')
        if not self._spacing > 0.0:
            raise ValueError(f'Wall spacing must be positive, got {spacing}')
        if nLayers < 1:
            raise ValueError(f'At least one wall layer is needed, got {nLayers}')

    @property
    def dimensions(self) -> int:
        '''Number of spatial dimensions (2 or 3).'''
        return len(self._containerMin)

    @property
    def lowerLimit(self) -> np.ndarray:
        '''Lowest position a fluid particle may take [m].'''
        return self._containerMin + self._margin

    @property
    def upperLimit(self) -> np.ndarray:
        '''Highest position a fluid particle may take [m].'''
        return self._containerMax - self._margin

    ######################################################################
    # -- Wall Particle Generation -- #
    ######################################################################

    def generatePositions(self) -> np.ndarray:
        '''
        Generate wall particle positions.

        Layer k sits (k + 1/2) spacings outside each face. The floor
        (and the lid, when the top is closed) extends under the side
        walls so the corners are covered.

        Returns:
        --------
        np.ndarray : Wall particle positions [m], shape (M, dim)
        '''
        if self.dimensions == 2:
            return self._generate2D()
        else:
            return self._generate3D()

    def _layerOffsets(self) -> np.ndarray:
        return (np.arange(self._nLayers) + 0.5) * self._spacing

    def _generate2D(self) -> np.ndarray:
        s = self._spacing
        xMin, yMin = self._containerMin
        xMax, yMax = self._containerMax
        extent = self._nLayers * s

        xFloor = np.arange(xMin - extent + s / 2.0, xMax + extent, s)
        yWall = np.arange(yMin + s / 2.0, yMax, s)

        allPositions: list[np.ndarray] = []
        for offset in self._layerOffsets():
            allPositions.append(np.column_stack([xFloor, np.full_like(xFloor, yMin - offset)]))
            allPositions.append(np.column_stack([np.full_like(yWall, xMin - offset), yWall]))
            allPositions.append(np.column_stack([np.full_like(yWall, xMax + offset), yWall]))

            if not self._openTop:
                allPositions.append(np.column_stack([xFloor, np.full_like(xFloor, yMax + offset)]))

        return np.vstack(allPositions)

    def _generate3D(self) -> np.ndarray:
        '''
        Floor and lid are xz planes, the side walls are yz planes at the
        x faces and xy planes at the z faces. The z-face walls span the
        interior x range only, so they do not overlap the x-face walls.
        '''
        s = self._spacing
        xMin, yMin, zMin = self._containerMin
        xMax, yMax, zMax = self._containerMax
        extent = self._nLayers * s

        xExt = np.arange(xMin - extent + s / 2.0, xMax + extent, s)
        zExt = np.arange(zMin - extent + s / 2.0, zMax + extent, s)
        xInner = np.arange(xMin + s / 2.0, xMax, s)
        yWall = np.arange(yMin + s / 2.0, yMax, s)

        floorX, floorZ = np.meshgrid(xExt, zExt, indexing='ij')
        sideY, sideZ = np.meshgrid(yWall, zExt, indexing='ij')
        frontX, frontY = np.meshgrid(xInner, yWall, indexing='ij')

        allPositions: list[np.ndarray] = []
        for offset in self._layerOffsets():
            #---# Floor (y = yMin - offset)
            allPositions.append(np.column_stack([
                floorX.ravel(), np.full(floorX.size, yMin - offset), floorZ.ravel()
            ]))

            #---# Left and right walls (x faces)
            for wallX in (xMin - offset, xMax + offset):
                allPositions.append(np.column_stack([
                    np.full(sideY.size, wallX), sideY.ravel(), sideZ.ravel()
                ]))

            #---# Front and back walls (z faces)
            for wallZ in (zMin - offset, zMax + offset):
                allPositions.append(np.column_stack([
                    frontX.ravel(), frontY.ravel(), np.full(frontX.size, wallZ)
                ]))

            #---# Lid (optional)
            if not self._openTop:
                allPositions.append(np.column_stack([
                    floorX.ravel(), np.full(floorX.size, yMax + offset), floorZ.ravel()
                ]))

        return np.vstack(allPositions)

    ######################################################################
    # -- Domain-Face Reflection -- #
    ######################################################################

    def enforce(self, positions: np.ndarray, velocities: np.ndarray) -> int:
        '''
        Clamp particles into the container and reflect their velocities.

        Every face a particle crossed adds its outward normal to a
        collision normal n. The particle is clamped onto the limits and,
        if it still moves outward (v . n > 0), its velocity becomes
        v - (1 + e)(v . n) n. Arrays are modified in place.

        Parameters:
        -----------
        positions : np.ndarray
            Particle positions [m], shape (N, dim)
        velocities : np.ndarray
            Particle velocities [m/s], shape (N, dim)

        Returns:
        --------
        int : Number of particles that hit a face
        '''
        lower = self.lowerLimit
        upper = self.upperLimit

        above = positions > upper
        below = positions < lower

        normals = above.astype(np.float64) - below.astype(np.float64)
        np.clip(positions, lower, upper, out=positions)

        normLengths = np.linalg.norm(normals, axis=1)
        hit = normLengths > 0.0
        if not np.any(hit):
            return 0

        normals[hit] /= normLengths[hit, np.newaxis]
        vDotN = np.sum(velocities * normals, axis=1)
        reflect = hit & (vDotN > 0.0)
        velocities[reflect] -= (
            (1.0 + self._restitution) * vDotN[reflect, np.newaxis] * normals[reflect]
        )

        return int(np.count_nonzero(hit))
